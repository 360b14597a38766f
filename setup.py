from setuptools import setup, find_packages
from pathlib import Path

description = "Python library for orchestration of certificate requests " \
    "through certmonger and IPA."

here = Path(__file__).parent  # return directory of current file
readme = Path(here, "README.md")
requirements = Path(here, "requirements.txt")

with requirements.open() as f:
    reqs = [line.strip() for line in f
            if line.strip() and not line.startswith("#")]

with readme.open() as f:
    long_description = f.read()

setup(
    name="CertAutolib",
    version="0.1.0",
    description=description,
    long_description=long_description,
    long_description_content_type='text/markdown',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Environment :: Console',
        'Framework :: Pytest',
        'Intended Audience :: System Administrators',
        'Operating System :: Unix',
        'Topic :: Security :: Cryptography',
        'Topic :: System :: Systems Administration',
    ],
    packages=find_packages(exclude=["test", "test.*"]),
    python_requires='>=3.9',
    install_requires=reqs,
    extras_require={
        'test': ["pytest"]
    },
    include_package_data=True,
    entry_points={
        "console_scripts": ["certauto=CertAutolib.cli_commands:cli"]
    }
)

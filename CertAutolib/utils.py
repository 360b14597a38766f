"""
This module provides a collection of utility and helper functions utilized
across the CertAutolib library. These functions
support the precondition checks of the host (IPA client configuration,
required packages and distribution). They are not
intended as general-purpose utilities.
"""


import distro
from typing import Union

from CertAutolib import run, logger, IPA_DEFAULT_CONF
from CertAutolib.exceptions import CertAutolibIPAException


def check_ipa_client(strict: bool = False) -> bool:
    """
    Checks that the IPA client is configured on the system. The IPA client
    is configured outside of CertAutolib, so its configuration file is used
    as a marker.

    :param strict: If ``True``, an exception is raised when the client is not
                   configured. Otherwise only a warning is logged.
    :type strict: bool
    :return: ``True`` if the IPA client is configured
    :rtype: bool
    :raises CertAutolibIPAException: If ``strict`` is set and the client is
                                     not configured
    """
    if IPA_DEFAULT_CONF.exists():
        logger.debug(f"IPA client configuration found in {IPA_DEFAULT_CONF}")
        return True
    logger.warning(f"IPA client is not configured ({IPA_DEFAULT_CONF} is "
                   f"missing), certificate requests are likely to fail")
    if strict:
        raise CertAutolibIPAException()
    return False


def required_packages() -> list[str]:
    """
    Returns the names of packages providing certmonger and its IPA helper on
    the current distribution.

    :return: List of package names
    :rtype: list
    """
    client = "freeipa-client" if isDistro("fedora") else "ipa-client"
    return ["certmonger", client]


def _check_packages(packages: list[str]):
    """
    Identifies and returns a list of packages that are required for
    CertAutolib but are not currently installed on the system.
    It uses ``rpm -q`` to query each package's installation status.

    :param packages: A list of strings, where each string is the name of a
                     package to check for.
    :type packages: list
    :return: A list of strings, containing the names of packages that were
             found to be missing on the system.
    :rtype: list
    """
    missing = []
    for pkg in packages:
        # Return code 1 means the package is not installed
        out = run(["rpm", "-q", pkg], return_code=[0, 1])
        if out.returncode == 1:
            logger.warning(f"Package {pkg} is required for certificate "
                           f"requests, but is not present in the system")
            missing.append(pkg)
        else:
            logger.debug(f"Package {out.stdout.strip()} is present")
    return missing


def isDistro(OSes: Union[str, list], version: str = None) -> bool:
    """
    Identifies if the current operating system matches a specified distribution
    and, optionally, its major version. This function leverages the ``distro``
    library to determine the system's ID, name, and version details.

    :param OSes: The ID or name of the operating system(s) to check against.
                 Can be a single string (e.g., "fedora", "rhel") or a list of
                 strings. Case-insensitive comparison is performed.
    :type OSes: Union[str, list]
    :param version: An optional string specifying the major version to check.
                    It can start with a comparison operator
                    (``<``, ``<=``, ``==``, ``>``, ``>=``).
                    If no operator is specified, ``==`` is assumed.
    :type version: str, optional
    :return: ``True`` if the current operating system matches the specified
             distribution(s) and version criteria; ``False`` otherwise.
    :rtype: bool
    """

    cur_id = distro.id().lower()
    cur_name = distro.name().lower()

    if isinstance(OSes, str):
        OSes = [OSes]
    results = any(item.lower() in cur_id or item.lower() in cur_name
                  for item in OSes if isinstance(item, str))
    if not results:
        return False

    if version:
        cur_major = int(distro.major_version())
        ops = {"<": lambda a, b: a < b, "<=": lambda a, b: a <= b,
               "==": lambda a, b: a == b, ">": lambda a, b: a > b,
               ">=": lambda a, b: a >= b}
        for op in ("<=", ">=", "==", "<", ">"):
            if version.startswith(op):
                return ops[op](cur_major, int(version[len(op):]))
        return cur_major == int(version)

    return True

"""
This module serves as the initialization point for the CertAutolib package.

It sets up the package-wide logging configuration using ``coloredlogs``.
It defines global constants for the paths CertAutolib works with: the
default base directory for certificate stores, the IPA client configuration
used as a precondition marker and the name of the certmonger IPA helper.

Additionally, it establishes validation schemas using the ``schema`` library
for the configuration file: the polling section and the certificate request
entries.

The module also provides a generalized ``run`` function, acting as a wrapper
for ``subprocess.run``. This wrapper standardizes command execution,
logging, error checking and per-invocation timeouts.
"""


import coloredlogs
import logging
import subprocess
from pathlib import Path
import time
from schema import Schema, Use, Or, And, Optional

from CertAutolib.exceptions import CertAutolibCommandFailed, \
    CertAutolibCommandTimeout

fmt = ("%(asctime)s %(name)s:%(module)s.%(funcName)s.%(lineno)d "
       "[%(levelname)s] %(message)s")
date_fmt = "%H:%M:%S"
coloredlogs.install(level="DEBUG", fmt=fmt, datefmt=date_fmt,
                    field_styles={'levelname': {'bold': True, 'color': 'blue'},
                                  'asctime': {'color': 'green'}})
logger = logging.getLogger(__name__)

DIR_PATH = Path(__file__).parent

DEFAULT_BASEDIR = Path("/etc/pki")
DEFAULT_DBNAME = "nssdb"
IPA_DEFAULT_CONF = Path("/etc/ipa/default.conf")
GETCERT = "ipa-getcert"

MARKER_DIR_MODE = 0o700
SEMAPHORE_MODE = 0o600
KEY_MODE = 0o440
CERT_MODE = 0o444


def _absolute(path: Path) -> bool:
    return path.is_absolute()


# Specify validation schema for one certificate request. The store kind is
# checked separately, so an unknown kind can be reported as such.
schema_request = Schema({
    'principal': And(Use(str), len),
    'store_kind': Use(str),
    Optional('dbname', default=DEFAULT_DBNAME): And(Use(str), len),
    Optional('basedir', default=DEFAULT_BASEDIR): And(Use(Path), _absolute),
    Optional('nickname', default=None): Or(None, And(Use(str), len)),
    Optional('password_file', default=None): Or(None, Use(Path)),
    Optional('key', default=None): Or(None, And(Use(Path), _absolute)),
    Optional('cert', default=None): Or(None, And(Use(Path), _absolute)),
    Optional('subject_cn', default=None): Or(None, And(Use(str), len)),
    Optional('owner_id', default=0): And(Use(int), lambda i: i >= 0),
    Optional('group_id', default=0): And(Use(int), lambda i: i >= 0),
    Optional('hostname', default=None): Or(None, And(Use(str), len)),
})

# Specify validation schema for the polling section
schema_poll = Schema({
    Optional('max_attempts', default=5): And(Use(int), lambda i: i >= 1),
    Optional('base_delay', default=1.0): And(Use(float), lambda d: d >= 0),
    Optional('timeout', default=60): And(Use(int), lambda t: t > 0),
    Optional('stale_after', default=300): And(Use(int), lambda t: t > 0),
    Optional('workers', default=4): And(Use(int), lambda w: w >= 1),
})


def run(cmd: list[str], stdout: int = subprocess.PIPE,
        stderr: int = subprocess.PIPE, check: bool = True, log: bool = True,
        return_code: list = None, sleep: int = 0, timeout: float = None,
        **kwargs) -> subprocess.CompletedProcess:
    """
    Executes an external command as a subprocess, providing a controlled
    wrapper around ``subprocess.run``. This function
    standardizes command execution, capturing and optionally printing output,
    performing robust error checking based on expected return codes, and
    provides consistent logging of what is being executed.

    :param cmd: The command to be executed, provided as a list of strings
                (preferred) or a single space-separated string.
    :type cmd: list or str
    :param stdout: Redirects the standard output of the command.
                   Defaults to ``subprocess.PIPE`` to capture output.
    :type stdout: None or int or IO
    :param stderr: Redirects the standard error of the command.
                   Defaults to ``subprocess.PIPE`` to capture output.
    :type stderr: None or int or IO
    :param check: If ``True``, the function will raise a
                  ``CertAutolibCommandFailed`` exception if the command's
                  return code is not in the ``return_code`` list. Defaults to
                  ``True``.
    :type check: bool
    :param log: If ``True``, the command's standard output will be logged at
                DEBUG level and standard error at WARNING level. Defaults to
                ``True``.
    :type log: bool
    :param return_code: A list of acceptable return codes for the command.
                        Defaults to ``[0]``.
    :type return_code: list
    :param sleep: The duration in seconds to pause execution after the command
                  completes. Defaults to ``0``.
    :type sleep: int
    :param timeout: Maximum number of seconds the command may run. ``None``
                    means no limit.
    :type timeout: float
    :param kwargs: Additional keyword arguments are passed directly to the
                   ``subprocess.run`` function.
    :raises CertAutolibCommandFailed: If ``check`` is ``True`` and the
                                      command's return code is not among
                                      the expected ``return_code`` values.
    :raises CertAutolibCommandTimeout: If the command did not finish within
                                       ``timeout`` seconds.
    :return: An object representing the completed process, including stdout,
             stderr, and return code.
    :rtype: subprocess.CompletedProcess
    """
    if return_code is None:
        return_code = [0]
    if isinstance(cmd, str):
        cmd = cmd.split(" ")
    cmd = [str(i) for i in cmd]
    logger.debug(f"run: {' '.join(cmd)}")
    try:
        out = subprocess.run(cmd, stdout=stdout, stderr=stderr,
                             encoding="utf-8", timeout=timeout, **kwargs)
    except subprocess.TimeoutExpired:
        logger.error(f"Command did not finish in {timeout} seconds")
        raise CertAutolibCommandTimeout(" ".join(cmd), timeout)
    if log:
        if out.stdout:
            logger.debug(out.stdout)
        if out.stderr:
            logger.warning(out.stderr)

    if check:
        if out.returncode not in return_code:
            logger.error(f"Unexpected return code {out.returncode}. "
                         f"Expected: {return_code}")
            raise CertAutolibCommandFailed(" ".join(cmd), out.returncode,
                                           out.stderr)
    time.sleep(sleep)
    return out

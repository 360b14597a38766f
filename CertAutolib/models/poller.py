"""
This module polls certmonger for the status of a submitted request.

Each attempt runs ``ipa-getcert list`` and classifies the reported state as
pending, issued or failed. Polling stops on the first issued or failed
state; between attempts the poller sleeps ``base_delay * attempt`` seconds.
"""


import re
import time

from CertAutolib import logger, run, GETCERT
from CertAutolib.enums import PollState, StoreKind
from CertAutolib.exceptions import CertAutolibCommandFailed, \
    CertAutolibCommandTimeout, PollFailed, PollTimeout
from CertAutolib.models.submitter import RequestHandle

ISSUED_STATES = {"MONITORING"}
FAILED_STATES = {"CA_REJECTED", "CA_UNCONFIGURED", "NEED_GUIDANCE",
                 "NEED_CSR_GEN_PIN", "NEED_KEY_GEN_PIN", "NEED_KEY_GEN_PERMS",
                 "NEED_CSR_GEN_TOKEN", "NEED_KEY_GEN_TOKEN"}

_STATUS_RE = re.compile(r"^\s*status:\s*(\S+)", re.MULTILINE)
_STUCK_RE = re.compile(r"^\s*stuck:\s*yes", re.MULTILINE)
_CA_ERROR_RE = re.compile(r"^\s*ca-error:\s*(.+)$", re.MULTILINE)


def classify(output: str):
    """
    Classifies the output of ``ipa-getcert list`` for a single request.

    :param output: Standard output of the command
    :type output: str
    :return: Tuple of the classified state and the raw certmonger status
             (``None`` if no request is listed yet)
    :rtype: tuple
    """
    m = _STATUS_RE.search(output)
    if m is None:
        return PollState.pending, None
    status = m.group(1)
    if status in ISSUED_STATES:
        return PollState.issued, status
    if status in FAILED_STATES or _STUCK_RE.search(output):
        err = _CA_ERROR_RE.search(output)
        if err:
            status = f"{status} ({err.group(1).strip()})"
        return PollState.failed, status
    return PollState.pending, status


class CompletionPoller:
    """
    Waits until certmonger reports the request as issued or failed.
    """

    def __init__(self, timeout: float = 60, sleep=time.sleep):
        """
        :param timeout: Maximum number of seconds a single status query may
                        take
        :type timeout: float
        :param sleep: Function used to suspend between attempts
        :type sleep: callable
        """
        self.timeout = timeout
        self._sleep = sleep

    def query(self, handle: RequestHandle):
        """
        Queries the status of the request once.

        :return: Tuple of the classified state and the certmonger status
        :rtype: tuple
        """
        cmd = [GETCERT, *handle.store.status_args(handle.request_id)]
        try:
            out = run(cmd, timeout=self.timeout, log=False)
        except CertAutolibCommandFailed as e:
            return PollState.failed, f"{GETCERT} list exited with " \
                                     f"{e.returncode}"
        except CertAutolibCommandTimeout:
            return PollState.failed, f"{GETCERT} list timed out"
        return classify(out.stdout or "")

    def await_issuance(self, handle: RequestHandle, max_attempts: int = 5,
                       base_delay: float = 1.0):
        """
        Polls the request until it is issued or failed, at most
        ``max_attempts`` times.

        :param handle: Handle of the submitted request
        :type handle: CertAutolib.models.submitter.RequestHandle
        :param max_attempts: Maximum number of status queries
        :type max_attempts: int
        :param base_delay: Delay after the first query, increases linearly
                           with every next attempt
        :type base_delay: float
        :return: Issued material for the file store, ``None`` for the NSS
                 store which is managed by certmonger directly
        :rtype: CertAutolib.models.request.IssuedMaterial or None
        :raises PollFailed: If certmonger reports a failure
        :raises PollTimeout: If the request is still pending after
                             ``max_attempts`` queries
        """
        principal = handle.spec.principal
        status = None
        for attempt in range(1, max_attempts + 1):
            state, status = self.query(handle)
            logger.debug(f"Attempt {attempt}/{max_attempts}: request of "
                         f"{principal} is {state.value} ({status})")
            if state == PollState.failed:
                logger.error(f"Request of {principal} failed: {status}")
                raise PollFailed(status)
            if state == PollState.issued:
                if handle.spec.store_kind == StoreKind.nss:
                    logger.info(f"Certificate for {principal} is issued")
                    return None
                material = handle.store.read_material()
                if material is not None:
                    logger.info(f"Certificate for {principal} is issued")
                    return material
            if attempt < max_attempts:
                self._sleep(base_delay * attempt)

        logger.warning(f"Request of {principal} is still pending after "
                       f"{max_attempts} attempts (last status {status})")
        raise PollTimeout(f"Certificate for {principal} is not issued after "
                          f"{max_attempts} attempts", attempts=max_attempts)

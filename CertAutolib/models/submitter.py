"""
This module submits certificate requests to certmonger through
``ipa-getcert``. The submitter does not check whether the request was
already made; callers consult the idempotency guard first.
"""


import re

from CertAutolib import logger, run, GETCERT
from CertAutolib.exceptions import CertAutolibCommandFailed, \
    CertAutolibCommandTimeout, SubmissionError
from CertAutolib.models.request import CertificateRequestSpec
from CertAutolib.models.store import BaseStore

_REQUEST_ID_RE = re.compile(r'New signing request "([^"]+)" added')


class RequestHandle:
    """
    Handle of a request accepted by certmonger, used to query its status.
    """

    def __init__(self, spec: CertificateRequestSpec, store: BaseStore,
                 request_id: str = None):
        self.spec = spec
        self.store = store
        self.request_id = request_id

    def __repr__(self):
        return f"<RequestHandle {self.spec.principal} id={self.request_id}>"


class RequestSubmitter:
    """
    Builds and issues ``ipa-getcert request`` for both store kinds.
    """

    def __init__(self, timeout: float = 60):
        """
        :param timeout: Maximum number of seconds a single ``ipa-getcert``
                        call may take
        :type timeout: float
        """
        self.timeout = timeout

    def submit(self, spec: CertificateRequestSpec,
               store: BaseStore = None) -> RequestHandle:
        """
        Submits the certificate request. The external command is executed
        exactly once and a failure is not retried.

        :param spec: Request specification
        :type spec: CertAutolib.models.request.CertificateRequestSpec
        :param store: Prepared store of the request. If not set, it is
                      created from the specification.
        :type store: CertAutolib.models.store.BaseStore
        :return: Handle of the accepted request
        :rtype: RequestHandle
        :raises SubmissionError: If the command fails or does not finish in
                                 time
        """
        if store is None:
            store = BaseStore.factory(spec)
        cmd = [GETCERT, *store.request_args()]
        logger.info(f"Requesting certificate for {spec.principal} "
                    f"({spec.store_kind.value} store)")
        try:
            out = run(cmd, timeout=self.timeout)
        except CertAutolibCommandFailed as e:
            logger.error(f"Certificate request for {spec.principal} was "
                         f"rejected")
            raise SubmissionError(e.returncode, e.stderr)
        except CertAutolibCommandTimeout as e:
            raise SubmissionError(stderr=str(e))

        m = _REQUEST_ID_RE.search(out.stdout or "")
        request_id = m.group(1) if m else None
        if request_id is None:
            logger.warning(f"Request id of {spec.principal} not found in "
                           f"the output of {GETCERT}")
        else:
            logger.debug(f"Certmonger request id is {request_id}")
        return RequestHandle(spec, store, request_id)

    def stop_tracking(self, handle: RequestHandle):
        """
        Stops tracking of a failed request by certmonger, so the request can
        be submitted again later.

        :param handle: Handle of the request
        :type handle: RequestHandle
        :raises CertAutolibCommandFailed: If certmonger refuses to stop
                                          tracking the request
        """
        cmd = [GETCERT, *handle.store.stop_tracking_args(handle.request_id)]
        run(cmd, timeout=self.timeout)
        logger.info(f"Certmonger stopped tracking request of "
                    f"{handle.spec.principal}")

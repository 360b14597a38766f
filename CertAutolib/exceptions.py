"""
Exceptions that are used in the CertAutolib library.
This module defines a hierarchy of custom exception classes that are
raised by CertAutolib components to signal specific error conditions
during a certificate request. Every exception carries the
``RequestOutcome`` it maps to, so callers processing many requests can report
a distinguishable result for each of them.
"""


from CertAutolib.enums import RequestOutcome


class CertAutolibException(Exception):
    """
    Base exception class for all custom exceptions within CertAutolib.
    All other CertAutolib-specific exceptions inherit from this class,
    allowing for a unified way to catch any error originating from the library.
    """
    outcome = RequestOutcome.ERROR

    def __init__(self, *args):
        super().__init__(*args)


class CertAutolibCommandFailed(CertAutolibException):
    """
    Exception raised when an external command returns unexpected return code.
    """

    def __init__(self, cmd: str, returncode: int, stderr: str = None):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr or ""
        super().__init__(f"Command '{cmd}' failed with return code "
                         f"{returncode}")


class CertAutolibCommandTimeout(CertAutolibException):
    """
    Exception raised when an external command does not finish in time.
    """

    def __init__(self, cmd: str, timeout: float):
        self.cmd = cmd
        self.timeout = timeout
        super().__init__(f"Command '{cmd}' timed out after {timeout} seconds")


class CertAutolibIPAException(CertAutolibException):
    """
    Exception raised when the IPA client is not configured on the system.
    """
    default = "IPA client is not configured on the system"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class CertAutolibWrongConfig(CertAutolibException):
    """
    Exception raised when a required key or section is missing or is
    incorrectly configured in the configuration file.
    """
    default = "Key/section for current operation is not present in the " \
              "configuration file"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class CertAutolibMaterialError(CertAutolibException):
    """
    Exception raised when key or certificate material can't be placed to its
    final location.
    """
    default = "Certificate material can't be written"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class InvalidSpec(CertAutolibException):
    """
    Exception raised when a certificate request specification misses fields
    required by its store kind or contains malformed values. It is raised
    before any side effect takes place.
    """
    default = "Certificate request specification is not valid"
    outcome = RequestOutcome.INVALID_SPEC

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class UnsupportedStoreKind(CertAutolibException):
    """
    Exception raised when the backing store kind is not one of the known
    security libraries.
    """
    outcome = RequestOutcome.UNSUPPORTED_STORE_KIND

    def __init__(self, kind=None):
        self.kind = kind
        super().__init__(f"Unrecognized security library: {kind}")


class StoreUnavailable(CertAutolibException):
    """
    Exception raised when the backing store can't be used, e.g. the NSS
    database directory does not exist.
    """
    default = "Certificate store is not available"
    outcome = RequestOutcome.STORE_UNAVAILABLE

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class SubmissionError(CertAutolibException):
    """
    Exception raised when the certificate request command is rejected or does
    not finish in time. The request is not retried.
    """
    outcome = RequestOutcome.SUBMISSION_ERROR

    def __init__(self, exit_code: int = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code is None:
            msg = f"Certificate request was not submitted: {stderr}"
        else:
            msg = f"Certificate request failed with exit code {exit_code}: " \
                  f"{stderr.strip()}"
        super().__init__(msg)


class PollTimeout(CertAutolibException):
    """
    Exception raised when the request is still pending after the maximum
    number of status queries. The condition is retryable.
    """
    default = "Certificate is still not issued"
    outcome = RequestOutcome.POLL_TIMEOUT

    def __init__(self, msg=None, attempts: int = None):
        self.attempts = attempts
        msg = self.default if msg is None else msg
        super().__init__(msg)


class PollFailed(CertAutolibException):
    """
    Exception raised when the daemon or the CA reports a terminal failure of
    the request. Operator intervention is required.
    """
    outcome = RequestOutcome.POLL_FAILED

    def __init__(self, last_status: str = None, msg=None):
        self.last_status = last_status
        msg = f"Certificate request failed with status {last_status}" \
            if msg is None else msg
        super().__init__(msg)

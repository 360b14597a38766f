"""
This module defines various enumeration classes used throughout the CertAutolib
library. These enumerations provide a set of
named constants, enhancing code readability and restricting values to a
predefined set.
"""


from enum import Enum, auto


class StoreKind(str, Enum):
    """
    Enumeration for the backing stores that can hold the key material of a
    requested certificate.
    """

    nss = "nss"  # NSS database directory, managed by certmonger
    file = "file"  # PEM key and certificate file pair


class RequestStatus(str, Enum):
    """
    Enumeration for the lifecycle status stored in a request record.
    """

    submitted = "submitted"  # request command is being executed
    polling = "polling"  # daemon accepted the request, waiting for the CA
    issued = "issued"  # certificate is issued and in place
    failed = "failed"  # daemon or CA reported a terminal failure


class PollState(str, Enum):
    """
    Enumeration for the classification of a single status query.
    """

    pending = "pending"
    issued = "issued"
    failed = "failed"


class RequestOutcome(Enum):
    """
    Enumeration for the outcome of processing one certificate request. The
    values are also used as exit codes of the CLI.
    """

    SUCCESS = 0  # certificate issued and materialized in this run
    ALREADY_SATISFIED = auto()  # an earlier run already requested it
    INVALID_SPEC = auto()  # request specification is malformed
    STORE_UNAVAILABLE = auto()  # backing store precondition is violated
    UNSUPPORTED_STORE_KIND = auto()  # unrecognized security library
    SUBMISSION_ERROR = auto()  # request command was rejected
    POLL_TIMEOUT = auto()  # still pending after all attempts, retryable
    POLL_FAILED = auto()  # daemon or CA reported a failure
    ERROR = auto()  # any other error

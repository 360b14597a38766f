"""
This module implements the idempotency guard of certificate requests.

A request is recorded in two places:

* the semaphore ``basedir/dbname/requested/<principal>``: its existence
  means the certificate was already requested and issued, so later runs do
  nothing;
* the pending record ``basedir/dbname/pending/<principal>.json``: it exists
  while a request is in flight, or after it failed, and carries the
  certmonger request id, so a run interrupted by a timeout resumes polling
  instead of submitting again.

Both files are created with an atomic create-if-absent operation: the
content is written to a temporary file which is then hard linked to the
final name. ``link`` fails if the name already exists, so only one of
concurrent callers can create the file.
"""


import fcntl
import os
from contextlib import contextmanager
from pathlib import Path

from CertAutolib import logger, SEMAPHORE_MODE
from CertAutolib.enums import RequestStatus
from CertAutolib.exceptions import CertAutolibException
from CertAutolib.models.request import CertificateRequestSpec, \
    RequestRecord, normalize_principal
from CertAutolib.models.writer import write_temp


def _create_exclusive(path: Path, content: str, mode: int, owner: int = None,
                      group: int = None) -> bool:
    tmp = write_temp(path, content.encode("utf-8"), mode, owner, group)
    try:
        os.link(tmp, path)
    except FileExistsError:
        return False
    finally:
        tmp.unlink()
    return True


class IdempotencyGuard:
    """
    Guards against duplicate submission of a certificate request for the
    same principal within one store.
    """

    def __init__(self, marker_dir: Path, pending_dir: Path, owner: int = 0,
                 group: int = 0, stale_after: int = 300):
        """
        :param marker_dir: Directory with semaphore files
        :type marker_dir: pathlib.Path
        :param pending_dir: Directory with pending records
        :type pending_dir: pathlib.Path
        :param owner: Numeric owner of semaphore files
        :type owner: int
        :param group: Numeric group of semaphore files
        :type group: int
        :param stale_after: Age in seconds after which a pending record whose
                            submission never finished is considered abandoned
        :type stale_after: int
        """
        self.marker_dir = Path(marker_dir)
        self.pending_dir = Path(pending_dir)
        self.owner = owner
        self.group = group
        self.stale_after = stale_after

    @classmethod
    def for_spec(cls, spec: CertificateRequestSpec, stale_after: int = 300):
        return cls(spec.marker_dir, spec.pending_dir, spec.owner_id,
                   spec.group_id, stale_after)

    def semaphore_path(self, principal: str) -> Path:
        return self.marker_dir.joinpath(normalize_principal(principal))

    def pending_path(self, principal: str) -> Path:
        return self.pending_dir.joinpath(
            f"{normalize_principal(principal)}.json")

    def already_requested(self, principal: str) -> bool:
        return self.semaphore_path(principal).exists()

    def mark_requested(self, principal: str, request_id: str = None) -> bool:
        """
        Creates the semaphore of the principal if it does not exist yet.

        :param principal: Principal of the request
        :type principal: str
        :param request_id: Certmonger request id stored in the record
        :type request_id: str
        :return: ``True`` if this call created the semaphore, ``False`` if it
                 already existed
        :rtype: bool
        """
        path = self.semaphore_path(principal)
        record = RequestRecord(principal, RequestStatus.issued,
                               request_id=request_id)
        created = _create_exclusive(path, record.to_json(), SEMAPHORE_MODE,
                                    self.owner, self.group)
        if created:
            logger.info(f"Request for {principal} is marked in {path}")
        else:
            logger.info(f"Request for {principal} was already marked by "
                        f"another run")
        return created

    def unmark(self, principal: str):
        path = self.semaphore_path(principal)
        if path.exists():
            path.unlink(missing_ok=True)
            logger.info(f"Semaphore {path} is removed")

    def record(self, principal: str):
        """
        Loads the record of an already requested principal.

        :return: Record or ``None`` if the principal was not requested
        :rtype: CertAutolib.models.request.RequestRecord or None
        """
        path = self.semaphore_path(principal)
        if not path.exists():
            return None
        return RequestRecord.load(path)

    def pending(self, principal: str):
        path = self.pending_path(principal)
        if not path.exists():
            return None
        return RequestRecord.load(path)

    def _abandoned(self, record: RequestRecord) -> bool:
        if record.status == RequestStatus.failed:
            return True
        return record.status == RequestStatus.submitted \
            and record.age > self.stale_after

    @contextmanager
    def _locked(self, path: Path):
        lock_path = path.with_name(f"{path.name}.lock")
        with lock_path.open("a+") as lock:
            fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    def begin(self, principal: str):
        """
        Atomically creates the pending record before the request is
        submitted. A record of a failed request, or a record whose
        submission never finished within ``stale_after`` seconds, is taken
        over.

        :param principal: Principal of the request
        :type principal: str
        :return: ``None`` if the caller created the record and should submit
                 the request, otherwise the record of the request already
                 in flight
        :rtype: CertAutolib.models.request.RequestRecord or None
        """
        path = self.pending_path(principal)
        record = RequestRecord(principal, RequestStatus.submitted)
        if _create_exclusive(path, record.to_json(), SEMAPHORE_MODE):
            logger.debug(f"Pending record {path} is created")
            return None

        with self._locked(path):
            existing = None
            try:
                existing = self.pending(principal)
            except CertAutolibException as e:
                logger.warning(f"{e}. Replacing it")
            if existing is not None and not self._abandoned(existing):
                logger.debug(f"Found pending record for {principal} with "
                             f"status {existing.status.value}")
                return existing

            if existing is not None:
                logger.warning(f"Pending record {path} with status "
                               f"{existing.status.value} is taken over")
            self.update_pending(record)
        return None

    def fail_pending(self, principal: str, request_id: str = None):
        """
        Records that the request failed. The next run submits it again.
        """
        self.update_pending(RequestRecord(principal, RequestStatus.failed,
                                          request_id=request_id))

    def update_pending(self, record: RequestRecord):
        path = self.pending_path(record.principal)
        tmp = write_temp(path, record.to_json().encode("utf-8"),
                         SEMAPHORE_MODE)
        os.replace(tmp, path)
        logger.debug(f"Pending record of {record.principal} is updated to "
                     f"{record.status.value}")

    def clear_pending(self, principal: str):
        path = self.pending_path(principal)
        if path.exists():
            path.unlink(missing_ok=True)
            logger.debug(f"Pending record {path} is removed")

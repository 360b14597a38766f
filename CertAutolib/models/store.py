"""
This module implements the credential store adapters. A store knows where
certmonger should keep the key material of a request and builds the
store-specific arguments of the ``ipa-getcert`` commands.

* ``NssStore``: certmonger manages the key and certificate directly in an
  existing NSS database.
* ``FilePairStore``: certmonger writes a PEM key and certificate into a
  private staging directory. The final key and certificate paths are only
  written after the certificate is issued, because an empty key file created
  in advance is taken by certmonger as an existing key and the request gets
  stuck waiting for key information.
"""


import os
from pathlib import Path

from CertAutolib import logger, MARKER_DIR_MODE
from CertAutolib.enums import StoreKind
from CertAutolib.exceptions import StoreUnavailable, UnsupportedStoreKind
from CertAutolib.models.request import CertificateRequestSpec, \
    IssuedMaterial


class BaseStore:
    """
    Common part of the credential stores: directory layout of request
    markers and the command arguments shared by both store kinds.
    """
    kind: StoreKind = None
    # Marker directories are always owned by root
    _marker_owner: int = 0
    _marker_group: int = 0

    def __init__(self, spec: CertificateRequestSpec):
        self.spec = spec

    @staticmethod
    def factory(spec: CertificateRequestSpec):
        """
        Creates the store matching the kind of the request.

        :param spec: Request specification
        :type spec: CertAutolib.models.request.CertificateRequestSpec
        :return: Store object
        :rtype: BaseStore
        :raises UnsupportedStoreKind: If the kind of the request is unknown
        """
        if spec.store_kind == StoreKind.nss:
            return NssStore(spec)
        elif spec.store_kind == StoreKind.file:
            return FilePairStore(spec)
        raise UnsupportedStoreKind(spec.store_kind)

    def prepare(self):
        """
        Checks preconditions of the store and creates the marker directories.

        :return: The prepared store
        :rtype: BaseStore
        """
        self._ensure_dir(self.spec.marker_dir)
        self._ensure_dir(self.spec.pending_dir)
        return self

    def _ensure_dir(self, path: Path):
        try:
            if not path.exists():
                path.mkdir(exist_ok=True)
                logger.debug(f"Directory {path} is created")
            os.chmod(path, MARKER_DIR_MODE)
            os.chown(path, self._marker_owner, self._marker_group)
        except OSError as e:
            raise StoreUnavailable(f"Directory {path} can't be prepared: {e}")

    def _subject_args(self) -> list:
        if self.spec.subject_cn:
            return ["-N", f"CN={self.spec.subject_cn}"]
        return []

    def request_args(self) -> list:
        ...

    def status_args(self, request_id: str = None) -> list:
        if request_id:
            return ["list", "-i", request_id]
        return ["list"] + self._tracking_args()

    def stop_tracking_args(self, request_id: str = None) -> list:
        if request_id:
            return ["stop-tracking", "-i", request_id]
        return ["stop-tracking"] + self._tracking_args()

    def _tracking_args(self) -> list:
        ...

    def read_material(self):
        """
        Reads the issued material. Only the file store has material to read.

        :return: None
        """
        return None

    def clear_staging(self):
        ...


class NssStore(BaseStore):
    """
    Store backed by an NSS database at ``basedir/dbname``. The database has
    to exist already; it is created outside of CertAutolib.
    """
    kind = StoreKind.nss

    @property
    def password_file(self) -> Path:
        if self.spec.password_file:
            return self.spec.password_file
        return self.spec.store_dir.joinpath("pwdfile.txt")

    def prepare(self):
        """
        Checks that the NSS database exists and creates the marker
        directories inside of it.

        :return: The prepared store
        :rtype: NssStore
        :raises StoreUnavailable: If the NSS database directory or its
                                  password file does not exist
        """
        db = self.spec.store_dir
        if not db.is_dir():
            logger.error(f"NSS database {db} does not exist")
            raise StoreUnavailable(f"NSS database {db} does not exist")
        if not self.password_file.exists():
            raise StoreUnavailable(f"Password file {self.password_file} of "
                                   f"NSS database {db} does not exist")
        super().prepare()
        logger.debug(f"NSS store {db} is prepared")
        return self

    def _tracking_args(self) -> list:
        return ["-d", str(self.spec.store_dir), "-n", self.spec.nickname]

    def request_args(self) -> list:
        return ["request", *self._tracking_args(),
                "-p", str(self.password_file),
                "-K", self.spec.principal, *self._subject_args()]


class FilePairStore(BaseStore):
    """
    Store backed by a PEM key and certificate pair. Certmonger writes the
    pair into the staging directory of the request; the materialization
    writer copies it to the final paths once the certificate is issued.
    """
    kind = StoreKind.file

    @property
    def staging_key(self) -> Path:
        return self.spec.pending_dir.joinpath(f"{self.spec.normalized_id}.key")

    @property
    def staging_cert(self) -> Path:
        return self.spec.pending_dir.joinpath(f"{self.spec.normalized_id}.crt")

    def prepare(self):
        """
        Creates the store and marker directories and removes a leftover
        empty staging key. Final key and certificate files are not touched.

        :return: The prepared store
        :rtype: FilePairStore
        :raises StoreUnavailable: If the parent directory of the final key
                                  or certificate does not exist, or the
                                  store directories can't be created
        """
        try:
            self.spec.store_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Store directory {self.spec.store_dir} "
                                   f"can't be created: {e}")
        for path in (self.spec.key, self.spec.cert):
            if not path.parent.is_dir():
                raise StoreUnavailable(f"Directory {path.parent} for {path} "
                                       f"does not exist")
        super().prepare()
        for path in (self.staging_key, self.staging_cert):
            if path.exists() and path.stat().st_size == 0:
                logger.warning(f"Removing empty staging file {path}")
                path.unlink()
        logger.debug(f"File store for {self.spec.principal} is prepared")
        return self

    def _tracking_args(self) -> list:
        return ["-f", str(self.staging_cert)]

    def request_args(self) -> list:
        return ["request", "-k", str(self.staging_key),
                "-f", str(self.staging_cert),
                "-K", self.spec.principal, *self._subject_args()]

    def read_material(self):
        """
        Reads the key and certificate written by certmonger into the staging
        directory.

        :return: Issued material or ``None`` if certmonger did not write both
                 files yet
        :rtype: CertAutolib.models.request.IssuedMaterial or None
        """
        data = []
        for path in (self.staging_cert, self.staging_key):
            if not path.exists() or path.stat().st_size == 0:
                logger.debug(f"Staging file {path} is not written yet")
                return None
            data.append(path.read_bytes())
        return IssuedMaterial(cert_bytes=data[0], key_bytes=data[1],
                              owner=self.spec.owner_id,
                              group=self.spec.group_id)

    def clear_staging(self):
        for path in (self.staging_key, self.staging_cert):
            if path.exists():
                path.unlink()
                logger.debug(f"Staging file {path} is removed")


def prepare(spec: CertificateRequestSpec) -> BaseStore:
    """
    Creates and prepares the store for given request.

    :param spec: Request specification
    :type spec: CertAutolib.models.request.CertificateRequestSpec
    :return: Prepared store
    :rtype: BaseStore
    """
    return BaseStore.factory(spec).prepare()

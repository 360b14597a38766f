"""
This module implements the data model of a certificate request: the
immutable ``CertificateRequestSpec`` describing what should be requested,
the ``RequestRecord`` persisted between runs and the ``IssuedMaterial``
handed from the poller to the materialization writer.
"""


import json
import re
import time
from pathlib import Path, PosixPath
from schema import SchemaError
from typing import Union

from CertAutolib import logger, schema_request, DEFAULT_BASEDIR, \
    DEFAULT_DBNAME, KEY_MODE, CERT_MODE
from CertAutolib.enums import StoreKind, RequestStatus
from CertAutolib.exceptions import InvalidSpec, UnsupportedStoreKind, \
    CertAutolibException

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._@-]")


def normalize_principal(principal: str) -> str:
    """
    Converts a principal to a token that can be safely used as a file name.
    Slashes and any other character that is not a letter, digit, dot, dash,
    underscore or ``@`` are replaced with underscores.

    :param principal: The principal, e.g. ``HTTP/host.example.com``
    :type principal: str
    :return: Normalized principal, e.g. ``HTTP_host.example.com``
    :rtype: str
    """
    normalized = _UNSAFE_CHARS.sub("_", principal)
    if normalized in (".", ".."):
        normalized = normalized.replace(".", "_")
    return normalized


class CertificateRequestSpec:
    """
    Describes one certificate that should be requested from the IPA CA
    through certmonger. The object is validated on construction and can't be
    modified afterwards.

    Depending on the store kind, different fields are required:

    * ``nss``:  ``nickname`` of the certificate in the NSS database located
      at ``basedir/dbname``
    * ``file``: absolute ``key`` and ``cert`` paths of the PEM pair
    """
    _frozen = False

    def __init__(self, principal: str, store_kind: Union[str, StoreKind],
                 dbname: str = DEFAULT_DBNAME,
                 basedir: Union[str, Path] = DEFAULT_BASEDIR,
                 nickname: str = None, password_file: Union[str, Path] = None,
                 key: Union[str, Path] = None, cert: Union[str, Path] = None,
                 subject_cn: str = None, owner_id: int = 0,
                 group_id: int = 0, hostname: str = None):
        """
        Initializes and validates the request specification.

        :param principal: Kerberos principal of the service the certificate
                          is issued for. If it does not contain a host part
                          and ``hostname`` is given, it is composed as
                          ``principal/hostname``.
        :type principal: str
        :param store_kind: Backing store kind, ``nss`` or ``file``
        :type store_kind: str or CertAutolib.enums.StoreKind
        :param dbname: Name of the directory under ``basedir`` holding the
                       NSS database and the request markers
        :type dbname: str
        :param basedir: Base directory of the store
        :type basedir: str or pathlib.Path
        :param nickname: Nickname of the certificate in the NSS database
        :type nickname: str
        :param password_file: Password file of the NSS database. Defaults to
                              ``pwdfile.txt`` inside of the database.
        :type password_file: str or pathlib.Path
        :param key: Final path of the private key (file store)
        :type key: str or pathlib.Path
        :param cert: Final path of the certificate (file store)
        :type cert: str or pathlib.Path
        :param subject_cn: Overrides the subject common name of the request
        :type subject_cn: str
        :param owner_id: Numeric owner of created files
        :type owner_id: int
        :param group_id: Numeric group of created files
        :type group_id: int
        :param hostname: Host part used to compose the principal
        :type hostname: str
        :raises UnsupportedStoreKind: If the store kind is unknown
        :raises InvalidSpec: If a field is malformed or a field required by
                             the store kind is missing
        """
        try:
            kind = StoreKind(store_kind)
        except ValueError:
            logger.error(f"Unrecognized security library {store_kind}")
            raise UnsupportedStoreKind(store_kind)

        fields = {"principal": principal, "store_kind": kind.value,
                  "dbname": dbname, "basedir": basedir, "nickname": nickname,
                  "password_file": password_file, "key": key, "cert": cert,
                  "subject_cn": subject_cn, "owner_id": owner_id,
                  "group_id": group_id, "hostname": hostname}
        try:
            data = schema_request.validate(
                {k: v for k, v in fields.items() if v is not None})
        except SchemaError as e:
            raise InvalidSpec(f"Invalid request for {principal}: {e}")

        if kind == StoreKind.nss and data["nickname"] is None:
            raise InvalidSpec(f"Nickname is required for NSS store "
                              f"(principal {principal})")
        if kind == StoreKind.file:
            if data["key"] is None or data["cert"] is None:
                raise InvalidSpec(f"Key and cert paths are required for file "
                                  f"store (principal {principal})")
            if data["key"] == data["cert"]:
                raise InvalidSpec("Key and cert paths must differ")

        self.principal = data["principal"]
        if "/" not in self.principal and data["hostname"]:
            self.principal = f"{self.principal}/{data['hostname']}"
        self.store_kind = kind
        self.dbname = data["dbname"]
        self.basedir = data["basedir"]
        self.nickname = data["nickname"]
        self.password_file = data["password_file"]
        self.key = data["key"]
        self.cert = data["cert"]
        self.subject_cn = data["subject_cn"]
        self.owner_id = data["owner_id"]
        self.group_id = data["group_id"]
        self.hostname = data["hostname"]
        self._frozen = True

    def __setattr__(self, name, value):
        if self._frozen:
            raise AttributeError(f"{type(self).__name__} can't be modified")
        super().__setattr__(name, value)

    def __repr__(self):
        return f"<{type(self).__name__} {self.principal} " \
               f"({self.store_kind.value})>"

    @property
    def normalized_id(self) -> str:
        return normalize_principal(self.principal)

    @property
    def store_dir(self) -> Path:
        """
        Directory of the store, ``basedir/dbname``. For the NSS store this
        is the NSS database itself.
        """
        return self.basedir.joinpath(self.dbname)

    @property
    def marker_dir(self) -> Path:
        return self.store_dir.joinpath("requested")

    @property
    def pending_dir(self) -> Path:
        return self.store_dir.joinpath("pending")

    def to_dict(self):
        """
        Converts the specification into a dictionary suitable for JSON
        serialization. The result can be passed back to ``from_dict``.

        :return: Dictionary with all fields of the specification
        :rtype: dict
        """
        d = {}
        for k, v in self.__dict__.items():
            if k.startswith("_"):
                continue
            if type(v) in (PosixPath, Path):
                v = str(v)
            elif isinstance(v, StoreKind):
                v = v.value
            d[k] = v
        return d

    @classmethod
    def from_dict(cls, cnt: dict):
        """
        Creates the specification from a configuration file entry.

        :param cnt: Dictionary with the request fields
        :type cnt: dict
        :return: Validated specification
        :rtype: CertificateRequestSpec
        :raises InvalidSpec: If required fields are missing or unknown fields
                             are present
        :raises UnsupportedStoreKind: If the store kind is unknown
        """
        if not isinstance(cnt, dict):
            raise InvalidSpec(f"Request entry has to be a mapping, got "
                              f"{type(cnt).__name__}")
        try:
            return cls(**cnt)
        except TypeError as e:
            raise InvalidSpec(str(e))


class RequestRecord:
    """
    Record of a submitted certificate request. It is stored as JSON in the
    semaphore file of the principal once the certificate is issued, and in
    the pending record while the request is in flight.
    """

    def __init__(self, principal: str, status: RequestStatus,
                 submitted_at: float = None, request_id: str = None):
        self.principal = principal
        self.normalized_id = normalize_principal(principal)
        self.status = RequestStatus(status)
        self.submitted_at = time.time() if submitted_at is None \
            else float(submitted_at)
        self.request_id = request_id

    @property
    def age(self) -> float:
        return time.time() - self.submitted_at

    def to_dict(self):
        return {"principal": self.principal,
                "normalized_id": self.normalized_id,
                "status": self.status.value,
                "submitted_at": self.submitted_at,
                "request_id": self.request_id}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @staticmethod
    def load(path: Path):
        """
        Loads the record from a JSON file.

        :param path: Path to the record
        :type path: pathlib.Path
        :return: Loaded record
        :rtype: RequestRecord
        :raises CertAutolibException: If the file does not contain a valid
                                      record
        """
        try:
            with path.open("r") as f:
                cnt = json.load(f)
            return RequestRecord(principal=cnt["principal"],
                                 status=cnt["status"],
                                 submitted_at=cnt["submitted_at"],
                                 request_id=cnt.get("request_id"))
        except (ValueError, KeyError, TypeError) as e:
            raise CertAutolibException(f"Request record {path} is corrupted: "
                                       f"{e}")


class IssuedMaterial:
    """
    Key and certificate issued for a file store request. The bytes are kept
    in memory only until they are written to the final location.
    """

    def __init__(self, cert_bytes: bytes, key_bytes: bytes = None,
                 owner: int = 0, group: int = 0, cert_mode: int = CERT_MODE,
                 key_mode: int = KEY_MODE):
        self.cert_bytes = cert_bytes
        self.key_bytes = key_bytes
        self.owner = owner
        self.group = group
        self.cert_mode = cert_mode
        self.key_mode = key_mode

    def discard(self):
        self.cert_bytes = None
        self.key_bytes = None

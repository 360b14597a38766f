import datetime
import os
import pytest
import subprocess
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from pathlib import Path

from CertAutolib.controller import Controller
from CertAutolib.models.poller import CompletionPoller
from CertAutolib.models.request import CertificateRequestSpec
from CertAutolib.models.store import BaseStore

PRINCIPAL = "svc/host.example.com"
REQUEST_ID = "20261018120000"


class FakeGetcert:
    """
    Replacement of ``subprocess.run`` emulating ``ipa-getcert``. Status
    queries return items of ``statuses`` one by one, the last one is
    repeated. When ``MONITORING`` is reported, key and certificate are
    written to the paths given in the request, as certmonger does. A second
    request for a location that is still tracked is rejected.
    """

    def __init__(self, key_pem: bytes, cert_pem: bytes):
        self.key_pem = key_pem
        self.cert_pem = cert_pem
        self.statuses = ["MONITORING"]
        self.request_rc = 0
        self.request_stderr = ""
        self.calls = []
        self.tracked = {}
        self.locations = {}
        self._next_id = int(REQUEST_ID)

    def __call__(self, cmd, stdout=None, stderr=None, encoding=None,
                 timeout=None, **kwargs):
        self.calls.append(list(cmd))
        if cmd[0] != "ipa-getcert":
            return subprocess.CompletedProcess(cmd, 0, f"{cmd[-1]}-1.0\n", "")
        action = cmd[1]
        if action == "request":
            return self._request(cmd)
        if action == "list":
            return self._list(cmd, timeout)
        if action == "stop-tracking":
            return self._stop_tracking(cmd)
        return subprocess.CompletedProcess(cmd, 1, "", "unknown command")

    def _opt(self, cmd, flag):
        return cmd[cmd.index(flag) + 1] if flag in cmd else None

    def _location(self, cmd):
        if "-f" in cmd:
            return ("-f", self._opt(cmd, "-f"))
        return ("-d", self._opt(cmd, "-d"), "-n", self._opt(cmd, "-n"))

    def _request(self, cmd):
        if self.request_rc != 0:
            return subprocess.CompletedProcess(cmd, self.request_rc, "",
                                               self.request_stderr)
        location = self._location(cmd)
        if location in self.locations.values():
            return subprocess.CompletedProcess(
                cmd, 1, "", "There is already a request with the same "
                            "certificate location.\n")
        request_id = str(self._next_id)
        self._next_id += 1
        self.tracked[request_id] = (self._opt(cmd, "-k"),
                                    self._opt(cmd, "-f"))
        self.locations[request_id] = location
        return subprocess.CompletedProcess(
            cmd, 0, f'New signing request "{request_id}" added.\n', "")

    def _stop_tracking(self, cmd):
        request_id = self._opt(cmd, "-i")
        if request_id is None:
            location = self._location(cmd)
            request_id = next((i for i, loc in self.locations.items()
                               if loc == location), None)
        if request_id not in self.locations:
            return subprocess.CompletedProcess(cmd, 1, "",
                                               "No request found.\n")
        self.locations.pop(request_id)
        self.tracked.pop(request_id, None)
        return subprocess.CompletedProcess(
            cmd, 0, f'Request "{request_id}" removed.\n', "")

    def _list(self, cmd, timeout):
        status = self.statuses.pop(0) if len(self.statuses) > 1 \
            else self.statuses[0]
        if status == "TIMEOUT":
            raise subprocess.TimeoutExpired(cmd, timeout)
        if status is None:
            return subprocess.CompletedProcess(
                cmd, 0, "Number of certificates and requests being tracked: "
                        "0.\n", "")
        request_id = self._opt(cmd, "-i") or REQUEST_ID
        if status == "MONITORING" and request_id in self.tracked:
            key, cert = self.tracked[request_id]
            if key and cert:
                Path(key).write_bytes(self.key_pem)
                Path(cert).write_bytes(self.cert_pem)
        stuck = "yes" if status.startswith("STUCK") else "no"
        status = status.replace("STUCK_", "")
        out = (f"Number of certificates and requests being tracked: 1.\n"
               f"Request ID '{request_id}':\n"
               f"\tstatus: {status}\n"
               f"\tstuck: {stuck}\n")
        if status == "CA_REJECTED":
            out += "\tca-error: Server denied our request\n"
        return subprocess.CompletedProcess(cmd, 0, out, "")

    def count(self, action: str) -> int:
        return sum(1 for c in self.calls
                   if c[0] == "ipa-getcert" and c[1] == action)


@pytest.fixture(scope="session")
def pem_pair():
    """
    Self-signed certificate and its private key in PEM format.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME,
                                         "host.example.com")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = x509.CertificateBuilder().subject_name(name).issuer_name(name) \
        .public_key(key.public_key()) \
        .serial_number(x509.random_serial_number()) \
        .not_valid_before(now) \
        .not_valid_after(now + datetime.timedelta(days=30)) \
        .sign(key, hashes.SHA256())
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption())
    return key_pem, cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(autouse=True)
def marker_owner(monkeypatch):
    """
    Marker directories are owned by root; tests run as the current user.
    """
    monkeypatch.setattr(BaseStore, "_marker_owner", os.getuid())
    monkeypatch.setattr(BaseStore, "_marker_group", os.getgid())


@pytest.fixture()
def getcert(monkeypatch, pem_pair):
    fake = FakeGetcert(*pem_pair)
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture()
def file_spec(tmp_path):
    tmp_path.joinpath("test2").mkdir()
    return CertificateRequestSpec(
        principal=PRINCIPAL, store_kind="file", basedir=tmp_path,
        dbname="test2", key=tmp_path.joinpath("test2", "test2.key"),
        cert=tmp_path.joinpath("test2", "test2.crt"),
        owner_id=os.getuid(), group_id=os.getgid())


@pytest.fixture()
def nss_db(tmp_path):
    db = tmp_path.joinpath("alias")
    db.mkdir()
    db.joinpath("pwdfile.txt").write_text("secret\n")
    return db


@pytest.fixture()
def nss_spec(tmp_path, nss_db):
    return CertificateRequestSpec(
        principal="HTTP/host.example.com", store_kind="nss",
        basedir=tmp_path, dbname="alias", nickname="Server-Cert",
        owner_id=os.getuid(), group_id=os.getgid())


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def controller(getcert, sleeps):
    poller = CompletionPoller(timeout=5, sleep=sleeps.append)
    return Controller(poller=poller)

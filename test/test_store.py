"""
This module contains unit tests for the credential store adapters
"""
import pytest
import stat

from CertAutolib.exceptions import StoreUnavailable
from CertAutolib.models.request import CertificateRequestSpec
from CertAutolib.models.store import BaseStore, NssStore, FilePairStore, \
    prepare


def _mode(path):
    return stat.S_IMODE(path.stat().st_mode)


def test_factory(file_spec, nss_spec):
    assert isinstance(BaseStore.factory(file_spec), FilePairStore)
    assert isinstance(BaseStore.factory(nss_spec), NssStore)


def test_nss_missing_database(tmp_path):
    spec = CertificateRequestSpec(principal="HTTP/host", store_kind="nss",
                                  basedir=tmp_path, dbname="missing",
                                  nickname="Server-Cert")
    with pytest.raises(StoreUnavailable, match="does not exist"):
        prepare(spec)
    assert not tmp_path.joinpath("missing").exists()


def test_nss_missing_password_file(nss_spec, nss_db):
    nss_db.joinpath("pwdfile.txt").unlink()
    with pytest.raises(StoreUnavailable, match="Password file"):
        prepare(nss_spec)


def test_nss_prepare(nss_spec):
    store = prepare(nss_spec)
    assert isinstance(store, NssStore)
    assert nss_spec.marker_dir.is_dir()
    assert _mode(nss_spec.marker_dir) == 0o700
    assert _mode(nss_spec.pending_dir) == 0o700


def test_nss_request_args(tmp_path, nss_db):
    spec = CertificateRequestSpec(principal="HTTP/host", store_kind="nss",
                                  basedir=tmp_path, dbname="alias",
                                  nickname="Server-Cert",
                                  subject_cn="www.example.com")
    args = NssStore(spec).request_args()
    assert args == ["request", "-d", str(nss_db), "-n", "Server-Cert",
                    "-p", str(nss_db.joinpath("pwdfile.txt")),
                    "-K", "HTTP/host", "-N", "CN=www.example.com"]


def test_file_prepare_does_not_create_key(file_spec):
    store = prepare(file_spec)
    assert not file_spec.key.exists()
    assert not file_spec.cert.exists()
    assert not store.staging_key.exists()
    assert store.staging_key.parent == file_spec.pending_dir


def test_file_prepare_removes_empty_staging_key(file_spec):
    store = prepare(file_spec)
    store.staging_key.touch()
    prepare(file_spec)
    assert not store.staging_key.exists()


def test_file_prepare_missing_parent(tmp_path):
    spec = CertificateRequestSpec(
        principal="svc/host", store_kind="file", basedir=tmp_path,
        dbname="test2", key=tmp_path.joinpath("nope", "a.key"),
        cert=tmp_path.joinpath("nope", "a.crt"))
    with pytest.raises(StoreUnavailable):
        prepare(spec)


def test_file_request_args(file_spec):
    store = FilePairStore(file_spec)
    args = store.request_args()
    assert args == ["request", "-k", str(store.staging_key),
                    "-f", str(store.staging_cert),
                    "-K", "svc/host.example.com"]
    assert str(file_spec.key) not in args
    assert store.status_args() == ["list", "-f", str(store.staging_cert)]
    assert store.status_args("7") == ["list", "-i", "7"]


def test_file_read_material(file_spec, pem_pair):
    store = prepare(file_spec)
    assert store.read_material() is None

    key_pem, cert_pem = pem_pair
    store.staging_key.write_bytes(key_pem)
    store.staging_cert.write_bytes(b"")
    assert store.read_material() is None

    store.staging_cert.write_bytes(cert_pem)
    material = store.read_material()
    assert material.key_bytes == key_pem
    assert material.cert_bytes == cert_pem
    assert material.owner == file_spec.owner_id


def test_file_store_directory_not_creatable(tmp_path):
    tmp_path.joinpath("blocker").write_text("not a directory")
    spec = CertificateRequestSpec(
        principal="svc/host.example.com", store_kind="file",
        basedir=tmp_path.joinpath("blocker"), dbname="test2",
        key=tmp_path.joinpath("a.key"), cert=tmp_path.joinpath("a.crt"))
    with pytest.raises(StoreUnavailable, match="can't be created"):
        prepare(spec)


def test_marker_directory_not_owned(file_spec, monkeypatch):
    def chown(*args):
        raise PermissionError("Operation not permitted")

    monkeypatch.setattr("CertAutolib.models.store.os.chown", chown)
    with pytest.raises(StoreUnavailable, match="can't be prepared"):
        prepare(file_spec)

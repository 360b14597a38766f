import pytest

from CertAutolib import utils
from CertAutolib.exceptions import CertAutolibIPAException


def test_check_ipa_client(monkeypatch, tmp_path):
    conf = tmp_path.joinpath("default.conf")
    monkeypatch.setattr(utils, "IPA_DEFAULT_CONF", conf)
    assert not utils.check_ipa_client()
    with pytest.raises(CertAutolibIPAException):
        utils.check_ipa_client(strict=True)

    conf.write_text("[global]\n")
    assert utils.check_ipa_client(strict=True)


def test_check_packages(monkeypatch):
    import subprocess

    def rpm(cmd, **kwargs):
        rc = 1 if cmd[-1] == "certmonger" else 0
        return subprocess.CompletedProcess(cmd, rc, f"{cmd[-1]}-1.0\n", "")

    monkeypatch.setattr(subprocess, "run", rpm)
    assert utils._check_packages(["certmonger", "ipa-client"]) == \
        ["certmonger"]


@pytest.mark.parametrize("version,expected", [
    (None, True), ("40", True), (">=39", True), ("<40", False),
    ("<=40", True), (">40", False), ("==41", False),
])
def test_is_distro(monkeypatch, version, expected):
    monkeypatch.setattr(utils.distro, "id", lambda: "fedora")
    monkeypatch.setattr(utils.distro, "name", lambda: "Fedora Linux")
    monkeypatch.setattr(utils.distro, "major_version", lambda: "40")
    assert utils.isDistro("fedora", version) is expected
    assert not utils.isDistro(["rhel", "centos"])


def test_required_packages(monkeypatch):
    monkeypatch.setattr(utils, "isDistro", lambda os: os == "fedora")
    assert utils.required_packages() == ["certmonger", "freeipa-client"]
    monkeypatch.setattr(utils, "isDistro", lambda os: False)
    assert utils.required_packages() == ["certmonger", "ipa-client"]
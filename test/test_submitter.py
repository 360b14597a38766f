"""
This module contains unit tests for the request submitter
"""
import pytest

from CertAutolib.exceptions import SubmissionError
from CertAutolib.models.store import prepare
from CertAutolib.models.submitter import RequestSubmitter
from fixtures import REQUEST_ID


def test_submit_file(getcert, file_spec):
    store = prepare(file_spec)
    handle = RequestSubmitter().submit(file_spec, store)

    assert handle.request_id == REQUEST_ID
    assert handle.store is store
    assert getcert.count("request") == 1
    assert getcert.calls[0] == ["ipa-getcert", *store.request_args()]


def test_submit_nss(getcert, nss_spec):
    handle = RequestSubmitter().submit(nss_spec)
    assert handle.request_id == REQUEST_ID
    cmd = getcert.calls[0]
    assert cmd[:2] == ["ipa-getcert", "request"]
    assert "-n" in cmd and "Server-Cert" in cmd


def test_submit_rejected(getcert, file_spec):
    getcert.request_rc = 2
    getcert.request_stderr = "Unable to find principal"
    with pytest.raises(SubmissionError) as e:
        RequestSubmitter().submit(file_spec, prepare(file_spec))
    assert e.value.exit_code == 2
    assert "Unable to find principal" in e.value.stderr
    assert getcert.count("request") == 1


def test_submit_timeout(monkeypatch, file_spec):
    import subprocess

    def hang(cmd, timeout=None, **kwargs):
        raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr(subprocess, "run", hang)
    with pytest.raises(SubmissionError, match="timed out") as e:
        RequestSubmitter(timeout=1).submit(file_spec, prepare(file_spec))
    assert e.value.exit_code is None


def test_stop_tracking(getcert, file_spec):
    submitter = RequestSubmitter()
    handle = submitter.submit(file_spec, prepare(file_spec))
    submitter.stop_tracking(handle)
    assert getcert.calls[-1] == ["ipa-getcert", "stop-tracking", "-i",
                                 REQUEST_ID]


def test_submit_tracked_location(getcert, file_spec):
    submitter = RequestSubmitter()
    store = prepare(file_spec)
    handle = submitter.submit(file_spec, store)
    with pytest.raises(SubmissionError, match="already a request"):
        submitter.submit(file_spec, store)

    submitter.stop_tracking(handle)
    assert submitter.submit(file_spec, store).request_id != REQUEST_ID

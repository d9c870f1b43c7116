"""Shared fixtures for reqvault tests."""

import pytest
import requests
from click.testing import CliRunner
from requests.structures import CaseInsensitiveDict

from reqvault import core, crypto
from reqvault.executor import ExecutionResult

TEST_SECRET = "test-secret-0123456789abcdef"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def global_reqvault_dir(tmp_path, monkeypatch):
    """Point ~/.reqvault at a temp location and run from a clean CWD."""
    fake_global = tmp_path / "fake_home" / ".reqvault"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return fake_global


@pytest.fixture(autouse=True)
def clean_key_cache(monkeypatch):
    """Each test starts without a cached key or a secret in the environment."""
    for name in crypto.SECRET_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    crypto.reset_key_cache()
    yield
    crypto.reset_key_cache()


@pytest.fixture
def key():
    return crypto.derive_key(TEST_SECRET)


@pytest.fixture
def secret_env(monkeypatch):
    monkeypatch.setenv("REQVAULT_ENCRYPTION_KEY", TEST_SECRET)
    return TEST_SECRET


def make_response(status_code=200, content=b"", headers=None, reason="OK"):
    """Factory for requests.Response objects with a preloaded body."""
    resp = requests.models.Response()
    resp.status_code = status_code
    resp._content = content
    resp.headers = CaseInsensitiveDict(headers or {})
    resp.reason = reason
    return resp


def make_execution_result(
    status_code=200,
    body=None,
    body_type="json",
    headers=None,
    elapsed_ms=42,
    error=None,
    content_type="application/json",
    size_bytes=0,
):
    """Factory for ExecutionResult objects."""
    r = ExecutionResult()
    r.status_code = status_code
    r.status_text = "OK" if status_code == 200 else ""
    r.body = body
    r.body_type = body_type
    r.headers = headers or {}
    r.elapsed_ms = elapsed_ms
    r.error = error
    r.content_type = content_type
    r.size_bytes = size_bytes
    return r

"""Shared fixtures: isolated stores on ``tmp_path`` and an app wired to them."""

import os

# Settings are read at import time, so pin the environment before branchportal loads.
os.environ["APP_ENV"] = "test"
os.environ.pop("DB_HOST", None)
os.environ["PORTAL_STORE"] = "memory"
os.environ["PORTAL_BUCKET"] = ""
os.environ["JWT_SECRET"] = "test-secret"
for _name in (
    "NAVER_MAP_CLIENT_ID",
    "NAVER_MAP_CLIENT_SECRET",
    "VITE_NAVER_MAP_CLIENT_ID",
    "VITE_NAVER_MAP_CLIENT_SECRET",
):
    os.environ[_name] = ""

import pytest
from fastapi.testclient import TestClient

from branchportal import accounts
from branchportal.auth_tokens import create_access_token
from branchportal.field_reports import MemoryFieldReportStore
from branchportal.main import app
from branchportal.notices import MemoryNoticeStore
from branchportal.object_store import LocalObjectStore
from branchportal.submission_store import MemorySubmissionStore, SqlSubmissionStore

WEEK_ID = "2024-03-04"


@pytest.fixture
def memory_store():
    return MemorySubmissionStore()


@pytest.fixture
def sqlite_store(tmp_path):
    return SqlSubmissionStore(tmp_path / "submissions.db", use_postgres=False)


@pytest.fixture
def object_store(tmp_path):
    return LocalObjectStore(tmp_path / "objects", secret="test-secret")


@pytest.fixture
def client(memory_store, object_store):
    app.state.submission_store = memory_store
    app.state.object_store = object_store
    app.state.field_report_store = MemoryFieldReportStore()
    app.state.notice_store = MemoryNoticeStore()
    yield TestClient(app)
    for name in ("submission_store", "object_store", "field_report_store", "notice_store"):
        setattr(app.state, name, None)


@pytest.fixture
def auth_headers():
    def _headers(username: str):
        token, _ = create_access_token(accounts.get_account(username))
        return {"Authorization": f"Bearer {token}"}

    return _headers

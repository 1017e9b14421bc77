"""Pytest configuration and shared fixtures."""

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from pebbledrive.core.config import settings
from pebbledrive.main import app
from pebbledrive.storage.factory import get_file_store, get_object_store, get_session_store
from pebbledrive.storage.file_store import FileRecordStore, create_db_engine
from pebbledrive.storage.local import LocalObjectStore
from pebbledrive.storage.session_store import InMemorySessionStore

TEST_SECRET = "test-secret"


@pytest.fixture
def object_store(tmp_path):
    """Local object store rooted in a temporary directory."""
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture
def session_store():
    """In-memory session store."""
    return InMemorySessionStore()


@pytest.fixture
def file_store():
    """Metadata store backed by in-memory SQLite."""
    return FileRecordStore(create_db_engine("sqlite://"))


@pytest.fixture
def auth_token(monkeypatch):
    """Configure the token secret and return a token signed with it."""
    monkeypatch.setattr(settings, "AUTH_TOKEN_SECRET", TEST_SECRET)
    return jwt.encode({"sub": "user-1"}, TEST_SECRET, algorithm="HS256")


@pytest.fixture
def override_stores(object_store, session_store, file_store):
    """Route every backend dependency to the test stores."""
    app.dependency_overrides[get_object_store] = lambda: object_store
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_file_store] = lambda: file_store
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(override_stores, auth_token):
    """Authenticated test client."""
    return TestClient(app, headers={"Authorization": f"Bearer {auth_token}"})

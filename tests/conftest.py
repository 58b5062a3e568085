"""Shared pytest fixtures for Radio Program Pipeline tests.

Common fixtures used across multiple test files: a temporary database, a
local object store, and a FastAPI test client wired to both.
"""

import tempfile
from pathlib import Path
from unittest import mock

import pytest
from fastapi.testclient import TestClient

from radio.db import init_db
from radio.segments import GenerationKey
from radio.storage import LocalObjectStore
from services.program_api.main import (
    app,
    get_db_session,
    override_object_store,
    override_session_factory,
)

CDN = "https://cdn.test"


@pytest.fixture
def temp_db():
    """Isolated SQLite database, also installed as the API session factory.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        override_session_factory(SessionFactory)
        yield db_path, engine, SessionFactory
        engine.dispose()


@pytest.fixture
def store(tmp_path):
    """Local object store rooted in a temp directory."""
    return LocalObjectStore(tmp_path / "storage", base_url=CDN)


@pytest.fixture
def key():
    return GenerationKey(language="en", world="spookyland", owner_id="lm42", variant="kids")


@pytest.fixture
def client(temp_db, store):
    """Create a FastAPI test client with temp database and local store.

    Huey enqueues are patched out; tests inspect the mock when they care.

    Yields:
        tuple: (test_client, SessionFactory, enqueue_mock)
    """
    db_path, engine, SessionFactory = temp_db

    def get_test_session():
        session = SessionFactory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = get_test_session
    override_object_store(store)

    with mock.patch("radio.huey_app.enqueue_job") as enqueue_mock:
        with TestClient(app) as test_client:
            yield test_client, SessionFactory, enqueue_mock

    app.dependency_overrides.clear()
    override_object_store(None)


@pytest.fixture
def session(temp_db):
    _, _, SessionFactory = temp_db
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()

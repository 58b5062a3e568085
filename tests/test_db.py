"""Tests for radio.db module."""

from datetime import timedelta

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError

from radio.config import LOCK_TTL_SECONDS
from radio.db import create_generation_lock, init_db, sqlite_url
from radio.models import GenerationLock, as_aware


class TestInitDb:
    """Tests for database initialization."""

    def test_creates_database_file(self, temp_db):
        db_path, _, _ = temp_db
        assert db_path.exists()

    def test_creates_all_tables(self, temp_db):
        """init_db should create all defined tables."""
        _, engine, _ = temp_db
        tables = inspect(engine).get_table_names()
        assert "generation_jobs" in tables
        assert "generation_locks" in tables

    def test_idempotent(self, temp_db):
        """init_db should be safe to call multiple times."""
        db_path, _, _ = temp_db
        engine2, _ = init_db(db_path)
        engine2.dispose()

    def test_database_url(self, tmp_path):
        assert sqlite_url(tmp_path / "x.db") == f"sqlite:///{tmp_path / 'x.db'}"

    def test_wal_mode(self, temp_db):
        """Connections share the file across processes in WAL mode."""
        _, engine, _ = temp_db
        with engine.connect() as conn:
            mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
        assert mode.lower() == "wal"


class TestCreateGenerationLock:
    """Tests for the lock creation primitive."""

    def test_default_ttl(self, session):
        lock = create_generation_lock(session, "en:w:o:kids", "worker-1")
        session.commit()

        stored = session.execute(select(GenerationLock)).scalar_one()
        delta = as_aware(stored.expires_at) - as_aware(stored.acquired_at)
        assert abs(delta - timedelta(seconds=LOCK_TTL_SECONDS)) < timedelta(seconds=1)
        assert lock.holder_id == "worker-1"

    def test_custom_ttl_and_job(self, session):
        lock = create_generation_lock(session, "en:w:o:kids", "worker-1", job_id="j1", ttl_seconds=5)
        assert lock.job_id == "j1"
        assert as_aware(lock.expires_at) - as_aware(lock.acquired_at) == timedelta(seconds=5)

    def test_duplicate_key_collides(self, session):
        """The unique constraint is what makes acquisition all-or-nothing."""
        create_generation_lock(session, "en:w:o:kids", "worker-1")
        session.commit()
        with pytest.raises(IntegrityError):
            create_generation_lock(session, "en:w:o:kids", "worker-2")
        session.rollback()

"""Radio Program Pipeline - Database engine and session management.

One SQLite file is shared by the API process, the Huey consumer and its
download threads. Every connection runs in WAL mode with a busy timeout so
short lock/claim transactions from different processes queue up instead of
failing with "database is locked".
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from radio.config import DB_BUSY_TIMEOUT_MS, DB_PATH, LOCK_TTL_SECONDS
from radio.models import Base, utc_now

if TYPE_CHECKING:
    from radio.models import GenerationLock


def sqlite_url(db_path: str | Path | None = None) -> str:
    return f"sqlite:///{db_path if db_path is not None else DB_PATH}"


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={DB_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def init_db(db_path: str | Path | None = None, echo: bool = False) -> tuple[Engine, sessionmaker]:
    """Open (creating if needed) the pipeline database.

    Idempotent: tables are only created when missing.

    Returns:
        Tuple of (engine, SessionFactory). Sessions do not autoflush and do
        not expire rows on commit, so job rows stay readable after the
        short transactions in radio.jobs and radio.locks.
    """
    path = Path(db_path) if db_path is not None else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        sqlite_url(path),
        echo=echo,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    Base.metadata.create_all(engine)

    SessionFactory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, SessionFactory


# --- GenerationLock Creation Primitive ---


def create_generation_lock(
    session: Session,
    lock_key: str,
    holder_id: str,
    job_id: str | None = None,
    ttl_seconds: int | None = None,
) -> GenerationLock:
    """Create a new GenerationLock with expires_at = now + TTL.

    Does NOT handle contention or reclamation; that belongs in radio.locks.

    Note:
        This function does NOT commit the transaction. It calls session.flush()
        so a unique-key collision surfaces here as IntegrityError.

    Args:
        session: Active database session.
        lock_key: Serialized generation key.
        holder_id: Identifier of the acquiring worker.
        job_id: Optional job the lock is held for.
        ttl_seconds: Optional TTL override. Defaults to LOCK_TTL_SECONDS.

    Returns:
        The created GenerationLock instance (flushed but not committed).
    """
    from radio.models import GenerationLock

    ttl = ttl_seconds if ttl_seconds is not None else LOCK_TTL_SECONDS
    now = utc_now()

    lock = GenerationLock(
        lock_key=lock_key,
        holder_id=holder_id,
        job_id=job_id,
        acquired_at=now,
        expires_at=now + timedelta(seconds=ttl),
    )
    session.add(lock)
    session.flush()
    return lock

"""Radio Program Pipeline - Generation lock.

At most one generation may be in flight per GenerationKey. The lock is a
row in generation_locks keyed by the serialized key:

- acquire() is non-blocking and all-or-nothing; False means "busy".
- release() deletes the row; hold() pairs the two so that every exit path
  of the holder releases exactly once.
- expires_at is a safety net for crashed holders: an expired row is
  reclaimed by the next acquire().

The same table also guards shared objects that are not scoped to one
GenerationKey (see NamedLock), such as the combined manifest.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from radio.db import create_generation_lock
from radio.models import GenerationLock, as_aware, utc_now

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from radio.segments import GenerationKey

logger = logging.getLogger(__name__)


@dataclass
class LockStatus:
    """Read-only view of a generation lock."""

    lock_key: str
    locked: bool
    holder_id: str | None = None
    job_id: str | None = None
    acquired_at: datetime | None = None
    expires_at: datetime | None = None
    expired: bool = False


@dataclass(frozen=True)
class NamedLock:
    """Lock scope identified by an explicit key string."""

    lock_key: str


def new_holder_id() -> str:
    return f"worker-{uuid.uuid4().hex[:8]}"


class GenerationLocks:
    """Acquire/release generation locks, one short transaction per call."""

    def __init__(self, session_factory: sessionmaker, ttl_seconds: int | None = None):
        self._session_factory = session_factory
        self._ttl_seconds = ttl_seconds

    def acquire(
        self,
        key: GenerationKey | NamedLock,
        holder_id: str | None = None,
        job_id: str | None = None,
    ) -> bool:
        """Try to take the lock for key without blocking.

        Returns:
            True if this caller now holds the lock, False if it is held
            by someone else and has not expired.
        """
        holder_id = holder_id or new_holder_id()
        session = self._session_factory()
        try:
            now = utc_now()
            # Reclaim only rows that are already expired; a live row makes
            # the insert below collide on the unique key.
            reclaimed = session.execute(
                delete(GenerationLock).where(
                    GenerationLock.lock_key == key.lock_key,
                    GenerationLock.expires_at < now,
                )
            ).rowcount
            if reclaimed:
                logger.info("Reclaimed expired generation lock for key=%s", key.lock_key)

            create_generation_lock(
                session,
                lock_key=key.lock_key,
                holder_id=holder_id,
                job_id=job_id,
                ttl_seconds=self._ttl_seconds,
            )
            session.commit()
            logger.info("Acquired generation lock key=%s holder=%s", key.lock_key, holder_id)
            return True
        except IntegrityError:
            session.rollback()
            logger.info("Generation lock busy for key=%s", key.lock_key)
            return False
        finally:
            session.close()

    def release(self, key: GenerationKey | NamedLock, holder_id: str | None = None) -> None:
        """Delete the lock row for key.

        When holder_id is given, only that holder's lock is removed so that a
        holder whose lock expired and was reclaimed cannot release the new
        owner's lock.
        """
        session = self._session_factory()
        try:
            stmt = delete(GenerationLock).where(GenerationLock.lock_key == key.lock_key)
            if holder_id is not None:
                stmt = stmt.where(GenerationLock.holder_id == holder_id)
            deleted = session.execute(stmt).rowcount
            session.commit()
            if deleted:
                logger.info("Released generation lock key=%s", key.lock_key)
            else:
                logger.warning(
                    "Release found no lock for key=%s holder=%s", key.lock_key, holder_id
                )
        finally:
            session.close()

    @contextmanager
    def hold(
        self,
        key: GenerationKey | NamedLock,
        job_id: str | None = None,
        attempts: int = 1,
        retry_delay: float = 0.0,
    ) -> Iterator[bool]:
        """Scoped acquisition.

        Tries up to attempts times, sleeping retry_delay seconds in between.
        Yields whether the lock was acquired. If it was, it is released when
        the block exits, including on exceptions.
        """
        holder_id = new_holder_id()
        acquired = self.acquire(key, holder_id=holder_id, job_id=job_id)
        for _ in range(attempts - 1):
            if acquired:
                break
            time.sleep(retry_delay)
            acquired = self.acquire(key, holder_id=holder_id, job_id=job_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key, holder_id=holder_id)

    def status(self, key: GenerationKey | NamedLock) -> LockStatus:
        """Read-only lock state for key."""
        session = self._session_factory()
        try:
            lock = _find_lock(session, key.lock_key)
            if lock is None:
                return LockStatus(lock_key=key.lock_key, locked=False)
            expires_at = as_aware(lock.expires_at)
            expired = expires_at <= utc_now()
            return LockStatus(
                lock_key=key.lock_key,
                locked=not expired,
                holder_id=lock.holder_id,
                job_id=lock.job_id,
                acquired_at=as_aware(lock.acquired_at),
                expires_at=expires_at,
                expired=expired,
            )
        finally:
            session.close()

    def is_locked(self, key: GenerationKey | NamedLock) -> bool:
        return self.status(key).locked


def _find_lock(session: Session, lock_key: str) -> GenerationLock | None:
    stmt = select(GenerationLock).where(GenerationLock.lock_key == lock_key)
    return session.execute(stmt).scalar_one_or_none()


def cleanup_expired_locks(session: Session) -> int:
    """Delete expired generation locks.

    Note:
        Does NOT commit; the caller owns the transaction.

    Returns:
        Number of locks removed.
    """
    stmt = select(GenerationLock).where(GenerationLock.expires_at < utc_now())
    expired = session.execute(stmt).scalars().all()

    for lock in expired:
        logger.info(
            "Cleaning up expired lock: key=%s, holder=%s, expired_at=%s",
            lock.lock_key,
            lock.holder_id,
            lock.expires_at,
        )
        session.delete(lock)

    session.flush()
    return len(expired)

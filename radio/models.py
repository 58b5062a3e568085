"""Radio Program Pipeline - SQLAlchemy ORM models.

Database tables:
1. generation_jobs
2. generation_locks
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def as_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from SQLite as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class JobStatus:
    """Job status values. Transitions only move forward."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationJob(Base):
    """One request to assemble and publish a program.

    Created once per request, mutated only by the worker that claimed it,
    never deleted.
    """

    __tablename__ = "generation_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Generation key
    language: Mapped[str] = mapped_column(String(16), nullable=False)
    world: Mapped[str] = mapped_column(String(128), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=JobStatus.PENDING, index=True
    )

    # Copy of the submitted, ordered segment list (JSON array)
    segments_json: Mapped[str] = mapped_column(Text, nullable=False)
    background_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Outcome
    program_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    manifest_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Per-stage metrics as JSON string (parsed by application)
    metrics_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_jobs_key", "language", "world", "owner_id", "variant"),
        Index("ix_jobs_status_created", "status", "created_at"),
    )


class GenerationLock(Base):
    """Mutual exclusion marker for one generation key.

    Absence of a row means unlocked. Rows with expires_at < now can be
    reclaimed by the next acquire.
    """

    __tablename__ = "generation_locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # "{language}:{world}:{owner_id}:{variant}"
    lock_key: Mapped[str] = mapped_column(String(255), nullable=False)

    holder_id: Mapped[str] = mapped_column(String(64), nullable=False)
    job_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("lock_key", name="uq_generation_lock_key"),
        Index("ix_generation_locks_expires_at", "expires_at"),
    )

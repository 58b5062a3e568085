"""Radio Program Pipeline - Job queue primitives.

Jobs move pending -> processing -> {completed | failed} and never back.
Both the immediate dispatch and the periodic sweep go through claim_job(),
an atomic conditional update, so a job is processed at most once no matter
how many triggers fire for it.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update

from radio.models import GenerationJob, JobStatus, as_aware, utc_now
from radio.segments import GenerationKey, Segment

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class InvalidJobTransition(Exception):
    """Raised when a status change would break the forward-only state machine."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id}: illegal transition {current} -> {requested}")


class JobNotFound(Exception):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


def generate_job_id() -> str:
    """Generate a unique job ID (uuid4 hex, 32 chars)."""
    return uuid.uuid4().hex


def job_key(job: GenerationJob) -> GenerationKey:
    return GenerationKey(
        language=job.language, world=job.world, owner_id=job.owner_id, variant=job.variant
    )


def job_segments(job: GenerationJob) -> list[Segment]:
    return [Segment.from_dict(item) for item in json.loads(job.segments_json)]


def create_job(
    session: Session,
    key: GenerationKey,
    segments: list[Segment],
    background_url: str | None = None,
) -> GenerationJob:
    """Persist a pending job and return it.

    Note:
        This function commits. The caller is expected to validate the
        segment list first; an empty list is rejected here as well.

    Raises:
        ValueError: If segments is empty.
    """
    if not segments:
        raise ValueError("segments must not be empty")

    job = GenerationJob(
        job_id=generate_job_id(),
        language=key.language,
        world=key.world,
        owner_id=key.owner_id,
        variant=key.variant,
        status=JobStatus.PENDING,
        segments_json=json.dumps([segment.to_dict() for segment in segments]),
        background_url=background_url,
        file_count=len(segments),
    )
    session.add(job)
    session.commit()
    logger.info(
        "Created job job_id=%s key=%s segments=%d", job.job_id, key.lock_key, len(segments)
    )
    return job


def get_job(session: Session, job_id: str) -> GenerationJob | None:
    """Pure read of a job row."""
    stmt = select(GenerationJob).where(GenerationJob.job_id == job_id)
    return session.execute(stmt).scalar_one_or_none()


def claim_job(session: Session, job_id: str) -> bool:
    """Atomically move a job from pending to processing.

    Note:
        This function commits.

    Returns:
        True if this caller claimed the job; False if it was already
        claimed (or does not exist).
    """
    result = session.execute(
        update(GenerationJob)
        .where(
            GenerationJob.job_id == job_id,
            GenerationJob.status == JobStatus.PENDING,
        )
        .values(status=JobStatus.PROCESSING, started_at=utc_now())
    )
    session.commit()
    claimed = result.rowcount == 1
    if claimed:
        logger.info("Claimed job_id=%s", job_id)
    else:
        logger.debug("Job job_id=%s not claimable", job_id)
    return claimed


def _finish(session: Session, job_id: str, status: str) -> GenerationJob:
    job = get_job(session, job_id)
    if job is None:
        raise JobNotFound(job_id)
    if job.status != JobStatus.PROCESSING:
        raise InvalidJobTransition(job_id, job.status, status)

    now = utc_now()
    job.status = status
    job.completed_at = now
    started_at = as_aware(job.started_at)
    if started_at is not None:
        job.processing_duration_ms = int((now - started_at).total_seconds() * 1000)
    return job


def mark_completed(
    session: Session,
    job_id: str,
    program_url: str,
    manifest: dict[str, Any] | None,
) -> GenerationJob:
    """processing -> completed. Commits.

    Raises:
        JobNotFound: If the job does not exist.
        InvalidJobTransition: If the job is not processing.
    """
    job = _finish(session, job_id, JobStatus.COMPLETED)
    job.program_url = program_url
    job.manifest_json = json.dumps(manifest) if manifest is not None else None
    session.commit()
    logger.info("Job job_id=%s completed in %sms", job_id, job.processing_duration_ms)
    return job


def mark_failed(
    session: Session,
    job_id: str,
    error_code: str,
    error_message: str,
) -> GenerationJob:
    """processing -> failed. Commits.

    Raises:
        JobNotFound: If the job does not exist.
        InvalidJobTransition: If the job is not processing.
    """
    job = _finish(session, job_id, JobStatus.FAILED)
    job.error_code = error_code
    job.error_message = error_message
    session.commit()
    logger.error("Job job_id=%s failed: %s - %s", job_id, error_code, error_message)
    return job


def update_job_metrics(
    session: Session,
    job: GenerationJob,
    namespace: str,
    metrics: dict,
) -> None:
    """Merge metrics into job.metrics_json under a namespace.

    Does not overwrite other namespaces. Flushes, does not commit.
    """
    try:
        existing = json.loads(job.metrics_json) if job.metrics_json else {}
    except (json.JSONDecodeError, TypeError):
        existing = {}

    if not isinstance(existing, dict):
        existing = {}

    existing[namespace] = metrics

    job.metrics_json = json.dumps(existing)
    session.flush()


def find_pending_jobs(session: Session, limit: int) -> list[GenerationJob]:
    """Oldest pending jobs first."""
    stmt = (
        select(GenerationJob)
        .where(GenerationJob.status == JobStatus.PENDING)
        .order_by(GenerationJob.created_at, GenerationJob.id)
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def count_processing_jobs(session: Session) -> int:
    stmt = select(func.count()).select_from(GenerationJob).where(
        GenerationJob.status == JobStatus.PROCESSING
    )
    return session.execute(stmt).scalar_one()


def find_stuck_jobs(session: Session, older_than_seconds: int) -> list[GenerationJob]:
    """Jobs that have been processing longer than older_than_seconds."""
    cutoff = utc_now() - timedelta(seconds=older_than_seconds)
    stmt = (
        select(GenerationJob)
        .where(
            GenerationJob.status == JobStatus.PROCESSING,
            GenerationJob.started_at < cutoff,
        )
        .order_by(GenerationJob.started_at)
    )
    return list(session.execute(stmt).scalars().all())


def parse_json_field(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None

"""Radio Program Pipeline - Program API service logic.

Core API business logic:
- Job submission with the in-flight check (409 when the key is locked)
- Job status views for polling clients
- The regeneration (idempotency) decision for a GenerationKey

No audio processing here; work runs in the Huey consumer.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from radio.jobs import create_job, get_job, parse_json_field
from radio.locks import GenerationLocks
from radio.manifests import RegenerationDecision, decide_regeneration, read_manifest
from radio.models import JobStatus, as_aware
from radio.recordings import RecordingLister, StoreRecordingLister
from radio.schemas import CreateJobRequest, JobStatusResponse
from radio.segments import GenerationKey
from radio.storage import ObjectStore, StorageError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker


# --- Error Codes ---


class ProgramApiErrorCode(StrEnum):
    INVALID_REQUEST = "INVALID_REQUEST"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    GENERATION_IN_PROGRESS = "GENERATION_IN_PROGRESS"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ProgramApiError(Exception):
    """Base exception for API errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class JobNotFoundError(ProgramApiError):
    def __init__(self, job_id: str):
        super().__init__(ProgramApiErrorCode.JOB_NOT_FOUND, f"Job not found: {job_id}")


class GenerationInProgressError(ProgramApiError):
    """A generation for the same key is already in flight."""

    def __init__(self, key: GenerationKey):
        super().__init__(
            ProgramApiErrorCode.GENERATION_IN_PROGRESS,
            f"A program generation is already in progress for {key.lock_key}",
        )


class StorageUnavailableError(ProgramApiError):
    def __init__(self, reason: str):
        super().__init__(ProgramApiErrorCode.STORAGE_UNAVAILABLE, f"Storage unavailable: {reason}")


# --- Service ---


def request_key(request: CreateJobRequest) -> GenerationKey:
    return GenerationKey(
        language=request.language,
        world=request.world,
        owner_id=request.owner_id,
        variant=request.variant,
    )


def submit_job(
    session: Session,
    session_factory: sessionmaker,
    request: CreateJobRequest,
) -> str:
    """Persist a pending job for an already-validated request.

    The lock check only rejects obvious duplicates early; the worker's own
    lock acquisition is what guarantees a single generation per key.

    Returns:
        The new job_id.

    Raises:
        GenerationInProgressError: If the key's lock is live.

    Note:
        This function commits (via create_job).
    """
    key = request_key(request)
    if GenerationLocks(session_factory).is_locked(key):
        raise GenerationInProgressError(key)

    segments = [segment.to_segment() for segment in request.segments]
    job = create_job(session, key, segments, background_url=request.background_url)
    return job.job_id


def job_status(session: Session, job_id: str) -> JobStatusResponse:
    """Build the polling view of a job.

    Raises:
        JobNotFoundError: If no job has this id.
    """
    job = get_job(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    response = JobStatusResponse(
        job_id=job.job_id,
        status=job.status,
        language=job.language,
        world=job.world,
        owner_id=job.owner_id,
        variant=job.variant,
        file_count=job.file_count,
        created_at=as_aware(job.created_at),
        started_at=as_aware(job.started_at),
        completed_at=as_aware(job.completed_at),
        processing_duration_ms=job.processing_duration_ms,
        metrics=parse_json_field(job.metrics_json),
    )
    if job.status == JobStatus.COMPLETED:
        response.program_url = job.program_url
        response.manifest = parse_json_field(job.manifest_json)
    elif job.status == JobStatus.FAILED:
        response.error_code = job.error_code
        response.error_message = job.error_message
    return response


def check_regeneration(
    session_factory: sessionmaker,
    store: ObjectStore,
    key: GenerationKey,
    lister: RecordingLister | None = None,
    now: datetime | None = None,
) -> RegenerationDecision:
    """Decide whether a new program should be generated for key.

    A live lock means a generation is already running: never regenerate.

    Raises:
        StorageUnavailableError: If recordings or the manifest cannot be read.
    """
    lister = lister if lister is not None else StoreRecordingLister(store)
    try:
        current = lister.list_recordings(key)
        manifest = read_manifest(store, key)
    except StorageError as e:
        raise StorageUnavailableError(e.reason) from e

    if GenerationLocks(session_factory).is_locked(key):
        return RegenerationDecision(
            False,
            "in_progress",
            len(current),
            manifest.recording_count if manifest is not None else None,
        )
    return decide_regeneration(manifest, current, now)


"""Radio Program Pipeline - Program API FastAPI application.

FastAPI service for program generation requests.

Creating a job persists it as pending and returns immediately. A
best-effort non-blocking Huey enqueue triggers processing; if that fails
the periodic sweep picks the job up. This module contains no audio
processing.

Run with:
    uvicorn services.program_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
import shutil
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from radio.db import init_db
from radio.locks import GenerationLocks
from radio.schemas import (
    CreateJobRequest,
    CreateJobResponse,
    ErrorResponse,
    JobStatusResponse,
    LockStatusResponse,
    RegenerationCheckResponse,
    SweepResponse,
)
from radio.segments import GenerationKey
from radio.storage import ObjectStore, get_object_store
from services.program_api.service import (
    ProgramApiError,
    ProgramApiErrorCode,
    check_regeneration,
    job_status,
    submit_job,
)

logger = logging.getLogger(__name__)

# --- Database Setup ---

# Set by lifespan(), or by override_session_factory() in tests
_session_factory = None

# Module-level object store (lazily created unless overridden)
_object_store: ObjectStore | None = None


def get_session_factory():
    """Session factory created by the lifespan handler (or a test override)."""
    global _session_factory
    if _session_factory is None:
        raise RuntimeError("Session factory not initialized. App lifespan not invoked?")
    return _session_factory


def get_db_session():
    """Yield a request-scoped session, closed after the response."""
    SessionFactory = get_session_factory()
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


def get_store() -> ObjectStore:
    global _object_store
    if _object_store is None:
        _object_store = get_object_store()
    return _object_store


def generation_key(
    language: Annotated[str, Query(min_length=1)],
    world: Annotated[str, Query(min_length=1)],
    owner_id: Annotated[str, Query(min_length=1)],
    variant: Annotated[str, Query(pattern="^(kids|parent)$")],
) -> GenerationKey:
    return GenerationKey(language=language, world=world, owner_id=owner_id, variant=variant)


# --- Lifespan ---


def _cleanup_orphans_safe() -> None:
    """Remove orphaned job work dirs and storage temp files (best-effort).

    Never crashes startup.
    """
    from radio.config import STORAGE_DIR, WORK_DIR, WORK_DIR_PREFIX
    from radio.utils.atomic_io import cleanup_orphan_temp_files

    try:
        removed_dirs = 0
        if WORK_DIR.exists():
            for work_dir in WORK_DIR.glob(f"{WORK_DIR_PREFIX}*"):
                if work_dir.is_dir():
                    shutil.rmtree(work_dir, ignore_errors=True)
                    removed_dirs += 1
        removed_files = cleanup_orphan_temp_files(STORAGE_DIR) if STORAGE_DIR.exists() else 0
        if removed_dirs or removed_files:
            logger.info(
                "Startup cleanup: removed %d work dirs, %d temp files", removed_dirs, removed_files
            )
    except Exception:
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database on startup and clean up orphans."""
    global _session_factory
    if _session_factory is None:
        _, _session_factory = init_db()

    _cleanup_orphans_safe()

    yield


# --- FastAPI App ---


app = FastAPI(
    title="Radio Program Pipeline - Program API",
    description="Program generation jobs, lock status and regeneration checks.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - INVALID_REQUEST -> 400
    - JOB_NOT_FOUND -> 404
    - GENERATION_IN_PROGRESS -> 409
    - STORAGE_UNAVAILABLE -> 503
    - anything else -> 500
    """
    if error_code == ProgramApiErrorCode.INVALID_REQUEST:
        return 400
    if error_code == ProgramApiErrorCode.JOB_NOT_FOUND:
        return 404
    if error_code == ProgramApiErrorCode.GENERATION_IN_PROGRESS:
        return 409
    if error_code == ProgramApiErrorCode.STORAGE_UNAVAILABLE:
        return 503
    return 500


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """ErrorResponse body with the status code for error_code."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=error_code,
            error_message=error_message,
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as 400 INVALID_REQUEST."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return make_error_response(ProgramApiErrorCode.INVALID_REQUEST, f"Invalid request: {details}")


def _enqueue_job_safe(job_id: str) -> None:
    """Best-effort enqueue; the sweep covers any failure here."""
    from radio.huey_app import enqueue_job

    try:
        enqueue_job(job_id)
    except Exception:
        logger.exception("Enqueue failed for job_id=%s (sweep will pick it up)", job_id)


# --- Endpoints ---


@app.post(
    "/v1/programs/jobs",
    response_model=CreateJobResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed request"},
        409: {"model": ErrorResponse, "description": "Generation already in progress"},
        500: {"model": ErrorResponse, "description": "Job could not be created"},
    },
    summary="Create a program generation job",
)
def create_program_job(
    request: CreateJobRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    """Create a pending generation job and return its id immediately."""
    try:
        job_id = submit_job(session, get_session_factory(), request)
    except ProgramApiError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        # Details go to the log only
        logger.exception("Unexpected error while creating job")
        return make_error_response(
            ProgramApiErrorCode.INTERNAL_ERROR,
            "An unexpected error occurred while creating the job",
        )

    logger.info(
        "Created job_id=%s for %s:%s:%s:%s (%d segments)",
        job_id,
        request.language,
        request.world,
        request.owner_id,
        request.variant,
        len(request.segments),
    )
    _enqueue_job_safe(job_id)
    return CreateJobResponse(job_id=job_id)


@app.get(
    "/v1/programs/jobs/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
    summary="Get job status",
)
def get_program_job(
    job_id: str,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        return job_status(session, job_id)
    except ProgramApiError as e:
        return make_error_response(e.error_code, e.message)


@app.get(
    "/v1/programs/lock",
    response_model=LockStatusResponse,
    summary="Get generation lock status",
)
def get_lock_status(key: Annotated[GenerationKey, Depends(generation_key)]):
    status = GenerationLocks(get_session_factory()).status(key)
    return LockStatusResponse(
        lock_key=status.lock_key,
        locked=status.locked,
        holder_id=status.holder_id,
        job_id=status.job_id,
        acquired_at=status.acquired_at,
        expires_at=status.expires_at,
        expired=status.expired,
    )


@app.get(
    "/v1/programs/regeneration",
    response_model=RegenerationCheckResponse,
    responses={503: {"model": ErrorResponse, "description": "Storage unavailable"}},
    summary="Check whether the program should be regenerated",
)
def get_regeneration_check(
    key: Annotated[GenerationKey, Depends(generation_key)],
    store: Annotated[ObjectStore, Depends(get_store)],
):
    try:
        decision = check_regeneration(get_session_factory(), store, key)
    except ProgramApiError as e:
        return make_error_response(e.error_code, e.message)
    return RegenerationCheckResponse(
        regenerate=decision.regenerate,
        reason=decision.reason,
        current_count=decision.current_count,
        manifest_count=decision.manifest_count,
        retry_after=decision.retry_after,
    )


@app.post(
    "/v1/programs/sweep",
    response_model=SweepResponse,
    responses={500: {"model": ErrorResponse, "description": "Sweep could not be queued"}},
    summary="Trigger a queue sweep",
)
def trigger_sweep():
    """Queue an immediate sweep (pending jobs and lost workers)."""
    from radio.huey_app import enqueue_sweep

    try:
        enqueue_sweep()
    except Exception:
        logger.exception("Sweep enqueue failed")
        return make_error_response(
            ProgramApiErrorCode.INTERNAL_ERROR,
            "Sweep could not be queued",
        )
    return SweepResponse()


@app.get("/health", summary="Health check")
def health_check():
    """Liveness probe; does not touch the database or storage."""
    return {"status": "ok"}


# --- For testing: allow overriding session factory and object store ---


def override_session_factory(factory):
    """Override the session factory for testing."""
    global _session_factory
    _session_factory = factory


def override_object_store(store: ObjectStore | None):
    """Override the object store for testing."""
    global _object_store
    _object_store = store

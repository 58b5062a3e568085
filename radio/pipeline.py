"""Radio Program Pipeline - Job orchestration.

Runs one generation job end to end:

    acquire lock -> claim job -> materialize -> analyze -> normalize
    -> assemble -> publish -> mark completed/failed -> release lock

Entry points:
- process_job(job_id): called by the immediate Huey task and by the sweep.
  Both converge on claim_job(), so a job runs at most once.
- sweep(): claims pending jobs oldest first and fails jobs whose worker
  was lost (processing past the lock TTL with no live lock).

Invariants:
- The lock is released on every exit path (GenerationLocks.hold).
- The per-job work directory is removed on every exit path.
- A fatal stage outcome marks the job failed and writes an error manifest
  with a cooldown; degraded outcomes are recorded in metrics only.
- A busy lock leaves the job pending for a later sweep.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from radio.config import (
    LOCK_TTL_SECONDS,
    MANIFEST_LOCK_TTL_SECONDS,
    MAX_CONCURRENT_JOBS,
    SWEEP_BATCH_SIZE,
)
from radio.db import init_db
from radio.errors import PipelineErrorCode
from radio.jobs import (
    InvalidJobTransition,
    JobNotFound,
    claim_job,
    count_processing_jobs,
    find_pending_jobs,
    find_stuck_jobs,
    get_job,
    job_key,
    job_segments,
    mark_completed,
    mark_failed,
    update_job_metrics,
)
from radio.locks import GenerationLocks, cleanup_expired_locks
from radio.models import JobStatus
from radio.outcomes import StageOutcome
from radio.recordings import contributing_recordings
from radio.segments import GenerationKey, Segment, find_background_url, infer_roles
from radio.storage import ObjectStore, get_object_store
from radio.utils.paths import job_work_dir
from services.publisher.run import publish_program, write_error_manifest
from services.worker_assemble.run import assemble_program
from services.worker_loudness.run import analyze_program
from services.worker_materialize.run import materialize_segments
from services.worker_normalize.run import normalize_recordings

if TYPE_CHECKING:
    import httpx
    from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

PROGRAM_FILENAME = "program.mp3"
WORKER_LOST_MESSAGE = "Worker lost: job exceeded the lock TTL without finishing"


@dataclass
class PipelineRun:
    """Outcome of running all stages for one job."""

    ok: bool
    error_code: str | None = None
    message: str | None = None
    program_url: str | None = None
    manifest: dict | None = None
    metrics: dict = field(default_factory=dict)
    degraded: list[str] = field(default_factory=list)

    def record(self, stage: str, outcome: StageOutcome) -> None:
        self.metrics[stage] = {"status": str(outcome.status), **outcome.metrics}
        if outcome.is_degraded:
            self.degraded.append(stage)
            logger.warning("Stage %s degraded: %s", stage, outcome.message)

    def fail(self, outcome: StageOutcome) -> PipelineRun:
        self.ok = False
        self.error_code = outcome.error_code
        self.message = outcome.message
        return self


def run_stages(
    job_id: str,
    key: GenerationKey,
    segments: list[Segment],
    background_url: str | None,
    work_dir: Path,
    store: ObjectStore,
    client: httpx.Client | None = None,
    locks: GenerationLocks | None = None,
) -> PipelineRun:
    """Run materialize -> analyze -> normalize -> assemble -> publish."""
    run = PipelineRun(ok=True)
    roles = infer_roles(segments)
    background_url = find_background_url(segments, background_url)

    materialized = materialize_segments(
        segments, roles, work_dir, background_url=background_url, client=client
    )
    run.record("materialize", materialized)
    if materialized.is_fatal:
        return run.fail(materialized)
    program = materialized.value

    analysis = analyze_program(program.segments)
    run.record("loudness", analysis)
    target_lufs = analysis.value.target_lufs

    normalized = normalize_recordings(program.segments, target_lufs)
    run.record("normalize", normalized)

    # A silent placeholder bed adds nothing; treat it as no background
    background_path = None if program.background_placeholder else program.background_path
    assembled = assemble_program(
        program.segments, work_dir / PROGRAM_FILENAME, background_path=background_path
    )
    run.record("assemble", assembled)
    if assembled.is_fatal:
        return run.fail(assembled)

    recording_urls = [
        url for segment in program.segments if segment.is_recording for url in segment.source_urls
    ]
    published = publish_program(
        store,
        key,
        assembled.value.output_path,
        contributing_recordings(key, recording_urls),
        job_id=job_id,
        locks=locks,
    )
    run.record("publish", published)
    if published.is_fatal:
        return run.fail(published)

    run.program_url = published.value.program_url
    run.manifest = published.value.manifest
    return run


def _finalize(
    session_factory: sessionmaker,
    job_id: str,
    key: GenerationKey,
    run: PipelineRun,
    store: ObjectStore,
) -> dict:
    session = session_factory()
    try:
        job = get_job(session, job_id)
        for namespace, metrics in run.metrics.items():
            update_job_metrics(session, job, namespace, metrics)
        if run.degraded:
            update_job_metrics(session, job, "degraded", run.degraded)

        if run.ok:
            mark_completed(session, job_id, run.program_url, run.manifest)
            return {"status": "completed", "job_id": job_id, "program_url": run.program_url}

        mark_failed(session, job_id, run.error_code, run.message)
    except (InvalidJobTransition, JobNotFound) as e:
        # Another actor (lost-job recovery) already finished this job
        logger.error("Could not record result for job_id=%s: %s", job_id, e)
        return {"status": "error", "job_id": job_id, "reason": "transition_rejected"}
    finally:
        session.close()

    write_error_manifest(store, key, run.error_code, run.message, job_id=job_id)
    return {"status": "failed", "job_id": job_id, "error_code": run.error_code}


def _execute_claimed(
    session_factory: sessionmaker,
    job_id: str,
    store: ObjectStore,
    client: httpx.Client | None,
    work_root: Path | None,
) -> dict:
    session = session_factory()
    try:
        job = get_job(session, job_id)
        key = job_key(job)
        segments = job_segments(job)
        background_url = job.background_url
    finally:
        session.close()

    work_dir = job_work_dir(job_id, work_root)
    manifest_locks = GenerationLocks(session_factory, ttl_seconds=MANIFEST_LOCK_TTL_SECONDS)
    try:
        run = run_stages(
            job_id, key, segments, background_url, work_dir, store, client, locks=manifest_locks
        )
    except Exception as e:
        logger.exception("Unexpected error while processing job_id=%s", job_id)
        run = PipelineRun(
            ok=False,
            error_code=PipelineErrorCode.WORKER_ERROR,
            message=f"Unexpected error: {type(e).__name__}: {e}",
        )
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    return _finalize(session_factory, job_id, key, run, store)


def process_job(
    job_id: str,
    session_factory: sessionmaker | None = None,
    store: ObjectStore | None = None,
    client: httpx.Client | None = None,
    work_root: Path | None = None,
) -> dict:
    """Process one job if it is still pending and its key is free.

    Idempotent: safe to call any number of times for the same job.

    Returns:
        Dict describing what happened (for logging/debugging).
    """
    if session_factory is None:
        _, session_factory = init_db()
    store = store if store is not None else get_object_store()

    session = session_factory()
    try:
        job = get_job(session, job_id)
        if job is None:
            logger.warning("process_job: unknown job_id=%s", job_id)
            return {"status": "error", "job_id": job_id, "reason": "not_found"}
        if job.status != JobStatus.PENDING:
            return {"status": "skipped", "job_id": job_id, "reason": f"status_{job.status}"}
        key = job_key(job)
    finally:
        session.close()

    locks = GenerationLocks(session_factory)
    with locks.hold(key, job_id=job_id) as acquired:
        if not acquired:
            logger.info("Key %s busy; job_id=%s stays pending", key.lock_key, job_id)
            return {"status": "skipped", "job_id": job_id, "reason": "lock_active"}

        session = session_factory()
        try:
            claimed = claim_job(session, job_id)
        finally:
            session.close()
        if not claimed:
            return {"status": "skipped", "job_id": job_id, "reason": "already_claimed"}

        return _execute_claimed(session_factory, job_id, store, client, work_root)


def fail_lost_jobs(session_factory: sessionmaker, store: ObjectStore) -> list[str]:
    """Fail jobs stuck in processing whose worker no longer holds the lock."""
    locks = GenerationLocks(session_factory)
    session = session_factory()
    lost: list[tuple[str, GenerationKey]] = []
    try:
        for job in find_stuck_jobs(session, LOCK_TTL_SECONDS):
            key = job_key(job)
            status = locks.status(key)
            if status.locked and status.job_id == job.job_id:
                continue
            mark_failed(session, job.job_id, PipelineErrorCode.WORKER_LOST, WORKER_LOST_MESSAGE)
            lost.append((job.job_id, key))
    finally:
        session.close()

    for job_id, key in lost:
        write_error_manifest(
            store,
            key,
            PipelineErrorCode.WORKER_LOST,
            WORKER_LOST_MESSAGE,
            job_id=job_id,
        )
    return [job_id for job_id, _ in lost]


def sweep(
    session_factory: sessionmaker | None = None,
    store: ObjectStore | None = None,
    limit: int = SWEEP_BATCH_SIZE,
    client: httpx.Client | None = None,
    work_root: Path | None = None,
    max_concurrent: int = MAX_CONCURRENT_JOBS,
) -> dict:
    """Periodic sweep: recover lost jobs, then process pending jobs FIFO.

    Claims at most limit jobs, and none while max_concurrent jobs are
    already processing.
    """
    if session_factory is None:
        _, session_factory = init_db()
    store = store if store is not None else get_object_store()

    lost = fail_lost_jobs(session_factory, store)

    session = session_factory()
    try:
        if cleanup_expired_locks(session):
            session.commit()
        slots = min(limit, max_concurrent - count_processing_jobs(session))
        pending = [job.job_id for job in find_pending_jobs(session, slots)] if slots > 0 else []
    finally:
        session.close()

    if not pending:
        return {"status": "no_work", "lost": lost, "results": []}

    results = [
        process_job(
            job_id,
            session_factory=session_factory,
            store=store,
            client=client,
            work_root=work_root,
        )
        for job_id in pending
    ]
    return {"status": "processed", "lost": lost, "results": results}

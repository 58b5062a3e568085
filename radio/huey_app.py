"""Radio Program Pipeline - Huey task queue configuration.

Huey with a SQLite backend, so queued generation work survives restarts
without any extra infrastructure.

How to run:
1. Start the program API:
   uvicorn services.program_api.main:app --reload

2. Start the Huey consumer (single worker keeps generation sequential):
   huey_consumer.py radio.huey_app.huey -w 1

The consumer runs jobs dispatched by the API and the periodic sweep that
recovers pending and lost jobs.
"""

from __future__ import annotations

import logging
from pathlib import Path

from huey import SqliteHuey, crontab

from radio.config import HUEY_DB_PATH, QUEUE_DIR

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


_ensure_queue_dir()

huey = SqliteHuey(
    name="radio_pipeline",
    filename=str(HUEY_DB_PATH),
    immediate=False,  # Tasks queued for consumer processing
)


@huey.task()
def process_job_task(job_id: str) -> dict:
    """Huey task to process one generation job.

    Safe to run more than once for the same job: process_job() only claims
    pending jobs.

    Args:
        job_id: The GenerationJob ID.

    Returns:
        Dict with the processing result (for logging/debugging).
    """
    # Import here to avoid circular imports
    from radio.pipeline import process_job

    logger.info("Process job task started for job_id=%s", job_id)
    result = process_job(job_id)
    logger.info("Process job task completed for job_id=%s: %s", job_id, result)
    return result


def _run_sweep() -> dict:
    from radio.pipeline import sweep

    result = sweep()
    if result["status"] != "no_work" or result["lost"]:
        logger.info("Sweep result: %s", result)
    return result


@huey.periodic_task(crontab(minute="*"))
def sweep_task() -> dict:
    """Every minute: fail lost jobs and pick up the oldest pending job."""
    return _run_sweep()


@huey.task()
def sweep_now_task() -> dict:
    """On-demand sweep (POST /v1/programs/sweep)."""
    return _run_sweep()


def enqueue_job(job_id: str) -> None:
    """Enqueue processing for the given job.

    Non-blocking: returns immediately even if the Huey consumer is not
    running. The task is persisted in SQLite and processed when the consumer
    starts; the periodic sweep picks the job up otherwise.
    """
    logger.info("Enqueueing job_id=%s", job_id)
    process_job_task(job_id)


def enqueue_sweep() -> None:
    logger.info("Enqueueing on-demand sweep")
    sweep_now_task()

"""Radio Program Pipeline - Publisher.

Uploads the master to its deterministic path (no timestamp in the name, so
every run overwrites the previous program) with strong no-cache headers,
and returns a cache-busted URL (?v={epoch_ms}&cb={random}).

After a successful upload the per-variant manifest is replaced and merged
into the combined manifest. The combined manifest is shared by the kids
and parent variants, so its merge runs under a named DB lock. Manifest
write failures are logged only: the program is already live at that point.

On fatal pipeline failures, write_error_manifest() replaces the variant
manifest with an error manifest whose retryAfter opens a cooldown.

Error codes:
- UPLOAD_FAILED: the program could not be stored (fatal)
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from email.utils import format_datetime
from pathlib import Path

from radio.config import MANIFEST_LOCK_ATTEMPTS, MANIFEST_LOCK_RETRY_SECONDS
from radio.errors import PipelineErrorCode
from radio.locks import GenerationLocks
from radio.manifests import (
    ProgramManifest,
    build_error_manifest,
    build_manifest,
    combined_manifest_lock,
    merge_combined_manifest,
    read_manifest,
    write_manifest,
)
from radio.models import utc_now
from radio.outcomes import StageOutcome
from radio.segments import GenerationKey
from radio.storage import ObjectStore, StorageError
from radio.utils.paths import program_object_path

logger = logging.getLogger(__name__)

PROGRAM_CONTENT_TYPE = "audio/mpeg"


@dataclass
class PublishedProgram:
    program_url: str
    object_path: str
    manifest: dict
    manifest_written: bool


def no_cache_headers(now: datetime) -> dict[str, str]:
    return {
        "Cache-Control": "no-cache, no-store, must-revalidate, max-age=0",
        "Pragma": "no-cache",
        "Expires": "0",
        "Last-Modified": format_datetime(now, usegmt=True),
    }


def cache_busted_url(url: str, now: datetime, token: str | None = None) -> str:
    """Append ?v={epoch_ms}&cb={token} to url."""
    epoch_ms = int(now.timestamp() * 1000)
    token = token or secrets.token_hex(4)
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}v={epoch_ms}&cb={token}"


def _merge_combined(
    store: ObjectStore,
    key: GenerationKey,
    manifest: ProgramManifest,
    locks: GenerationLocks | None,
) -> bool:
    if locks is None:
        merge_combined_manifest(store, key, manifest)
        return True

    with locks.hold(
        combined_manifest_lock(key),
        attempts=MANIFEST_LOCK_ATTEMPTS,
        retry_delay=MANIFEST_LOCK_RETRY_SECONDS,
    ) as acquired:
        if not acquired:
            logger.error("Combined manifest lock busy for key=%s, merge skipped", key.lock_key)
            return False
        merge_combined_manifest(store, key, manifest)
    return True


def publish_program(
    store: ObjectStore,
    key: GenerationKey,
    program_path: Path,
    recording_files: list[str],
    job_id: str | None = None,
    locks: GenerationLocks | None = None,
) -> StageOutcome[PublishedProgram]:
    """Upload the program and record it in the manifests.

    With locks, the combined manifest merge is serialized against the other
    variants of the same key.
    """
    now = utc_now()
    object_path = program_object_path(key)

    try:
        store.put_file(object_path, program_path, PROGRAM_CONTENT_TYPE, headers=no_cache_headers(now))
    except StorageError as e:
        logger.error("Program upload failed for %s: %s", object_path, e.reason)
        return StageOutcome.fatal(
            PipelineErrorCode.UPLOAD_FAILED, f"Program upload failed: {e.reason}"
        )

    program_url = cache_busted_url(store.public_url(object_path), now)
    manifest = build_manifest(key, program_url, recording_files, job_id=job_id, now=now)

    manifest_written = True
    try:
        write_manifest(store, key, manifest)
        manifest_written = _merge_combined(store, key, manifest, locks)
    except StorageError as e:
        manifest_written = False
        logger.error("Manifest write failed for key=%s (program is live): %s", key.lock_key, e)

    logger.info(
        "Published %s (%d recordings) for key=%s",
        object_path,
        manifest.recording_count,
        key.lock_key,
    )
    published = PublishedProgram(
        program_url=program_url,
        object_path=object_path,
        manifest=manifest.to_json(),
        manifest_written=manifest_written,
    )
    metrics = {"object_path": object_path, "manifest_written": manifest_written}
    if not manifest_written:
        return StageOutcome.degraded(
            published,
            PipelineErrorCode.MANIFEST_WRITE_FAILED,
            "Program published but manifest could not be written",
            metrics=metrics,
        )
    return StageOutcome.ok(published, metrics=metrics)


def write_error_manifest(
    store: ObjectStore,
    key: GenerationKey,
    error_code: str,
    error_message: str,
    job_id: str | None = None,
) -> ProgramManifest | None:
    """Replace the variant manifest with an error manifest (best-effort).

    Returns:
        The written manifest, or None if it could not be written.
    """
    try:
        previous = read_manifest(store, key)
        manifest = build_error_manifest(key, previous, error_code, error_message, job_id=job_id)
        write_manifest(store, key, manifest)
    except StorageError as e:
        logger.error("Error manifest write failed for key=%s: %s", key.lock_key, e)
        return None

    logger.warning(
        "Error manifest written for key=%s: failure %d, retry after %s",
        key.lock_key,
        manifest.failure_count,
        manifest.retry_after,
    )
    return manifest

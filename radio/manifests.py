"""Radio Program Pipeline - Program manifests and the regeneration decision.

Objects per generation key directory (/{language}/{owner_id}/{world}):

- last-program-manifest-{variant}.json: what produced the current program
  for one variant, or an error manifest after a failed run.
- last-program-manifest.json: combined view; each variant owns the
  "{variant}*" fields and never touches another variant's fields.

Manifests written by older versions lack recordingFiles, jobId and the
error fields; they parse with those fields absent/zero. The legacy
"lmid" owner field is accepted as ownerId.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from radio.config import ERROR_COOLDOWN_MAX_SECONDS, ERROR_COOLDOWN_SECONDS, MANIFEST_VERSION
from radio.locks import NamedLock
from radio.models import as_aware, utc_now
from radio.segments import GenerationKey
from radio.storage import ObjectStore, read_json, write_json
from radio.utils.paths import combined_manifest_path, variant_manifest_path

logger = logging.getLogger(__name__)


class ProgramManifest(BaseModel):
    """Per-variant manifest (success or error form)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    generated_at: datetime | None = Field(default=None, alias="generatedAt")
    language: str | None = None
    world: str | None = None
    owner_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ownerId", "lmid", "owner_id"),
        serialization_alias="ownerId",
    )
    variant: str | None = None
    recording_count: int = Field(default=0, alias="recordingCount")
    recording_files: list[str] | None = Field(default=None, alias="recordingFiles")
    program_url: str | None = Field(default=None, alias="programUrl")
    version: str | None = None
    job_id: str | None = Field(default=None, alias="jobId")

    # Error manifest fields
    error: bool = False
    failure_count: int = Field(default=0, alias="failureCount")
    retry_after: datetime | None = Field(default=None, alias="retryAfter")
    error_code: str | None = Field(default=None, alias="errorCode")
    error_message: str | None = Field(default=None, alias="errorMessage")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def build_manifest(
    key: GenerationKey,
    program_url: str,
    recording_files: list[str],
    job_id: str | None = None,
    now: datetime | None = None,
) -> ProgramManifest:
    """Success manifest for a freshly published program."""
    files = sorted(set(recording_files))
    return ProgramManifest(
        generated_at=now or utc_now(),
        language=key.language,
        world=key.world,
        owner_id=key.owner_id,
        variant=key.variant,
        recording_count=len(files),
        recording_files=files,
        program_url=program_url,
        version=MANIFEST_VERSION,
        job_id=job_id,
    )


def cooldown_seconds(failure_count: int) -> int:
    """Cooldown after the Nth consecutive failure: base * 2^(N-1), capped."""
    exponent = max(failure_count - 1, 0)
    return min(ERROR_COOLDOWN_SECONDS * (2**exponent), ERROR_COOLDOWN_MAX_SECONDS)


def build_error_manifest(
    key: GenerationKey,
    previous: ProgramManifest | None,
    error_code: str,
    error_message: str,
    job_id: str | None = None,
    now: datetime | None = None,
) -> ProgramManifest:
    """Error manifest that keeps the last good program and opens a cooldown."""
    now = now or utc_now()
    failure_count = (previous.failure_count if previous is not None and previous.error else 0) + 1
    return ProgramManifest(
        generated_at=now,
        language=key.language,
        world=key.world,
        owner_id=key.owner_id,
        variant=key.variant,
        recording_count=previous.recording_count if previous is not None else 0,
        recording_files=previous.recording_files if previous is not None else None,
        program_url=previous.program_url if previous is not None else None,
        version=MANIFEST_VERSION,
        job_id=job_id,
        error=True,
        failure_count=failure_count,
        retry_after=now + timedelta(seconds=cooldown_seconds(failure_count)),
        error_code=error_code,
        error_message=error_message,
    )


def parse_manifest(data: dict | None) -> ProgramManifest | None:
    if data is None:
        return None
    try:
        return ProgramManifest.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring invalid manifest: %s", e)
        return None


def read_manifest(store: ObjectStore, key: GenerationKey) -> ProgramManifest | None:
    return parse_manifest(read_json(store, variant_manifest_path(key)))


def write_manifest(store: ObjectStore, key: GenerationKey, manifest: ProgramManifest) -> None:
    write_json(store, variant_manifest_path(key), manifest.to_json())


def combined_manifest_lock(key: GenerationKey) -> NamedLock:
    """Lock scope shared by every variant writing the same combined manifest."""
    return NamedLock(f"combined:{key.language}:{key.owner_id}:{key.world}")


def merge_combined_manifest(
    store: ObjectStore,
    key: GenerationKey,
    manifest: ProgramManifest,
) -> dict:
    """Read-modify-write the combined manifest.

    Only this variant's prefixed fields and the shared identity fields are
    replaced; everything else already in the object is kept as is.
    Callers running variants concurrently hold combined_manifest_lock(key)
    around this call.
    """
    path = combined_manifest_path(key)
    combined = read_json(store, path) or {}

    variant = key.variant
    combined[f"{variant}Program"] = manifest.program_url
    combined[f"{variant}RecordingCount"] = manifest.recording_count
    combined[f"{variant}GeneratedAt"] = manifest.to_json().get("generatedAt")
    if manifest.job_id is not None:
        combined[f"{variant}JobId"] = manifest.job_id

    combined["generatedAt"] = utc_now().isoformat()
    combined["language"] = key.language
    combined["world"] = key.world
    combined["ownerId"] = key.owner_id
    combined["version"] = MANIFEST_VERSION

    write_json(store, path, combined)
    return combined


def is_cooling_down(manifest: ProgramManifest | None, now: datetime | None = None) -> bool:
    if manifest is None or not manifest.error or manifest.retry_after is None:
        return False
    return as_aware(manifest.retry_after) > (now or utc_now())


@dataclass
class RegenerationDecision:
    regenerate: bool
    reason: str
    current_count: int
    manifest_count: int | None = None
    retry_after: datetime | None = None


def decide_regeneration(
    manifest: ProgramManifest | None,
    current_files: list[str],
    now: datetime | None = None,
) -> RegenerationDecision:
    """Should a new program be generated for the current recordings?

    A live cooldown always wins. Otherwise regenerate when recordings exist
    and either there is no manifest or the recordings differ from what the
    manifest recorded (filename sets when available, else counts).
    """
    current = sorted(set(current_files))
    count = len(current)
    manifest_count = manifest.recording_count if manifest is not None else None

    if is_cooling_down(manifest, now):
        return RegenerationDecision(
            False, "cooldown", count, manifest_count, retry_after=manifest.retry_after
        )
    if count == 0:
        return RegenerationDecision(False, "no_recordings", count, manifest_count)
    if manifest is None:
        return RegenerationDecision(True, "no_manifest", count)
    if manifest.recording_files is not None:
        if set(manifest.recording_files) != set(current):
            return RegenerationDecision(True, "recordings_changed", count, manifest_count)
        return RegenerationDecision(False, "unchanged", count, manifest_count)
    if manifest.recording_count != count:
        return RegenerationDecision(True, "recording_count_changed", count, manifest_count)
    return RegenerationDecision(False, "unchanged", count, manifest_count)

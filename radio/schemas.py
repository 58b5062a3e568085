"""Radio Program Pipeline - Pydantic models for API validation.

Request/response models for the program API. Segment validation happens
here, before any job row is created.
"""

from datetime import datetime  # noqa: I001
from typing import Annotated, Any, Literal
from urllib.parse import urlsplit

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from radio.config import DOWNLOAD_SCHEMES
from radio.segments import Role, Segment, SegmentKind


def _check_download_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in DOWNLOAD_SCHEMES or not parts.netloc:
        raise ValueError("must be an absolute http(s) URL")
    return value


# Audio sources are always fetched over HTTP(S); anything else is rejected
# before a job exists.
DownloadUrl = Annotated[str, AfterValidator(_check_download_url)]

SegmentKindName = Literal[
    "single",
    "recording",
    "question_intro",
    "pause",
    "question_transition",
    "silence",
    "combine_with_background",
]


# --- Request Models ---


class SegmentIn(BaseModel):
    """One segment of the requested program."""

    model_config = ConfigDict(extra="forbid")

    kind: SegmentKindName = Field(..., description="Segment kind")
    source_url: DownloadUrl | None = Field(
        default=None,
        description="Audio URL for single/recording segments",
    )
    duration_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Silence length for pause-like segments (default 2s)",
    )
    answer_urls: list[DownloadUrl] | None = Field(
        default=None,
        description="Recordings played back to back (combine_with_background)",
    )
    background_url: DownloadUrl | None = Field(
        default=None,
        description="Background track for an answer group",
    )
    question_id: str | None = Field(default=None, description="Question this segment belongs to")
    role: Role | None = Field(
        default=None,
        description="Explicit structural role; inferred from kind/position when absent",
    )

    @model_validator(mode="after")
    def _check_sources(self) -> "SegmentIn":
        if self.kind in ("single", "recording") and not self.source_url:
            raise ValueError(f"{self.kind} segment requires source_url")
        if self.kind == "combine_with_background" and not self.answer_urls:
            raise ValueError("combine_with_background segment requires non-empty answer_urls")
        return self

    def to_segment(self) -> Segment:
        return Segment(
            kind=SegmentKind(self.kind),
            source_url=self.source_url,
            duration_seconds=self.duration_seconds,
            answer_urls=tuple(self.answer_urls or ()),
            background_url=self.background_url,
            question_id=self.question_id,
            role=self.role,
        )


class CreateJobRequest(BaseModel):
    """Request payload for a program generation job."""

    model_config = ConfigDict(extra="forbid")

    language: str = Field(..., min_length=1, description="Program language")
    world: str = Field(..., min_length=1, description="World (program) identifier")
    owner_id: str = Field(..., min_length=1, description="Owner identifier")
    variant: Literal["kids", "parent"] = Field(..., description="Program variant")
    segments: list[SegmentIn] = Field(
        ...,
        min_length=1,
        description="Ordered program segments",
    )
    background_url: DownloadUrl | None = Field(
        default=None,
        description="Background track (defaults to the first answer group's)",
    )


# --- Response Models ---


class CreateJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="pending", description="Initial job status")
    job_id: str = Field(..., description="Unique identifier for the generation job")


class JobStatusResponse(BaseModel):
    """Job status for polling clients."""

    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(..., description="Unique job identifier")
    status: str = Field(..., description="pending, processing, completed or failed")
    language: str
    world: str
    owner_id: str
    variant: str
    file_count: int = Field(..., ge=1, description="Number of submitted segments")
    created_at: datetime = Field(..., description="When the job was created")
    started_at: datetime | None = Field(default=None, description="When processing started")
    completed_at: datetime | None = Field(default=None, description="When processing finished")
    processing_duration_ms: int | None = Field(default=None, description="Processing time")
    program_url: str | None = Field(default=None, description="Published program (completed)")
    manifest: dict[str, Any] | None = Field(default=None, description="Manifest (completed)")
    error_code: str | None = Field(default=None, description="Error code (failed)")
    error_message: str | None = Field(default=None, description="Error message (failed)")
    metrics: dict[str, Any] | None = Field(default=None, description="Per-stage measurements")


class LockStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lock_key: str
    locked: bool
    holder_id: str | None = None
    job_id: str | None = None
    acquired_at: datetime | None = None
    expires_at: datetime | None = None
    expired: bool = False


class RegenerationCheckResponse(BaseModel):
    """Whether a new program should be generated for the current recordings."""

    model_config = ConfigDict(extra="forbid")

    regenerate: bool
    reason: str = Field(..., description="Why (e.g. unchanged, cooldown, recordings_changed)")
    current_count: int = Field(..., ge=0, description="Qualifying recordings right now")
    manifest_count: int | None = Field(default=None, description="Count in the last manifest")
    retry_after: datetime | None = Field(default=None, description="End of the cooldown")


class SweepResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="queued", description="Sweep dispatch status")


class ErrorResponse(BaseModel):
    """Response for failed API operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error code")
    error_message: str = Field(..., description="Human-readable error description")


__all__ = [
    "SegmentIn",
    "CreateJobRequest",
    "CreateJobResponse",
    "JobStatusResponse",
    "LockStatusResponse",
    "RegenerationCheckResponse",
    "SweepResponse",
    "ErrorResponse",
]

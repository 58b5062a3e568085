"""Radio Program Pipeline - Per-stage outcome type.

A stage returns a StageOutcome instead of swallowing exceptions:

- ok: the stage produced its value.
- degraded: the stage produced a usable fallback value (e.g. a recording
  published un-normalized); the caller may continue.
- fatal: there is no usable value; the caller must fail the job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class OutcomeStatus(StrEnum):
    OK = "ok"
    DEGRADED = "degraded"
    FATAL = "fatal"


@dataclass
class StageOutcome(Generic[T]):
    """Result of one pipeline stage."""

    status: OutcomeStatus
    value: T | None = None
    error_code: str | None = None
    message: str | None = None
    metrics: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, value: T, metrics: dict | None = None) -> StageOutcome[T]:
        return cls(OutcomeStatus.OK, value=value, metrics=metrics or {})

    @classmethod
    def degraded(
        cls, value: T, error_code: str, message: str, metrics: dict | None = None
    ) -> StageOutcome[T]:
        return cls(
            OutcomeStatus.DEGRADED,
            value=value,
            error_code=error_code,
            message=message,
            metrics=metrics or {},
        )

    @classmethod
    def fatal(cls, error_code: str, message: str, metrics: dict | None = None) -> StageOutcome[T]:
        return cls(OutcomeStatus.FATAL, error_code=error_code, message=message, metrics=metrics or {})

    @property
    def is_fatal(self) -> bool:
        return self.status == OutcomeStatus.FATAL

    @property
    def is_degraded(self) -> bool:
        return self.status == OutcomeStatus.DEGRADED

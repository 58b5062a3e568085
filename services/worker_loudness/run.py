"""Radio Program Pipeline - Loudness Analyzer.

Measures the authored system-voice segments (prompts and closing asset;
jingles and silences excluded) with an ffmpeg loudnorm analysis pass and
derives the target level for recordings:

    target = mean(integrated loudness of measured system files)

Per-file failures, timeouts and digital silence (-inf) produce an
unmeasured result that is left out of the mean. With nothing measured the
target falls back to DEFAULT_TARGET_LUFS. This stage is never fatal.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

from radio.audio.ffmpeg import parse_loudnorm_json, run_ffmpeg
from radio.audio.filtergraph import Loudnorm, render_chain
from radio.config import (
    ANALYSIS_TIMEOUT_SECONDS,
    DEFAULT_TARGET_LUFS,
    LOUDNESS_RANGE_LU,
    TRUE_PEAK_DBTP,
)
from radio.errors import EngineError, PipelineErrorCode
from radio.outcomes import StageOutcome
from radio.segments import SYSTEM_VOICE_ROLES, MaterializedSegment

logger = logging.getLogger(__name__)


@dataclass
class LoudnessMeasurement:
    """Loudness of one file. integrated is None when unmeasured."""

    path: str
    integrated: float | None = None
    loudness_range: float | None = None
    true_peak: float | None = None
    threshold: float | None = None
    error: str | None = None

    @property
    def measured(self) -> bool:
        return self.integrated is not None


@dataclass
class TargetLevel:
    target_lufs: float
    measurements: list[LoudnessMeasurement]
    used_default: bool


def _as_float(value) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def analysis_filter(target_lufs: float = DEFAULT_TARGET_LUFS) -> str:
    return render_chain(
        [Loudnorm(target_lufs, TRUE_PEAK_DBTP, LOUDNESS_RANGE_LU, print_json=True)]
    )


def measure_loudness(path: str | Path, timeout: float = ANALYSIS_TIMEOUT_SECONDS) -> LoudnessMeasurement:
    """Run a loudnorm analysis pass over one file.

    Never raises for engine problems; they become an unmeasured result.
    """
    path = str(path)
    args = ["-i", path, "-af", analysis_filter(), "-f", "null", "-"]
    try:
        run = run_ffmpeg(args, timeout)
    except EngineError as e:
        logger.warning("Loudness analysis failed for %s: %s", path, e.message)
        return LoudnessMeasurement(path=path, error=e.error_code)

    payload = parse_loudnorm_json(run.stderr)
    if payload is None:
        logger.warning("No loudnorm payload for %s", path)
        return LoudnessMeasurement(path=path, error=PipelineErrorCode.ANALYSIS_FAILED)

    integrated = _as_float(payload.get("input_i"))
    measurement = LoudnessMeasurement(
        path=path,
        integrated=integrated,
        loudness_range=_as_float(payload.get("input_lra")),
        true_peak=_as_float(payload.get("input_tp")),
        threshold=_as_float(payload.get("input_thresh")),
    )
    if integrated is None:
        # -inf: digital silence (e.g. a placeholder)
        measurement.error = "SILENT"
    return measurement


def system_voice_segments(segments: list[MaterializedSegment]) -> list[MaterializedSegment]:
    return [s for s in segments if s.role in SYSTEM_VOICE_ROLES and not s.placeholder]


def compute_target(measurements: list[LoudnessMeasurement]) -> tuple[float, bool]:
    """Mean integrated loudness of measured files, or the default."""
    values = [m.integrated for m in measurements if m.integrated is not None]
    if not values:
        return DEFAULT_TARGET_LUFS, True
    return sum(values) / len(values), False


def analyze_program(
    segments: list[MaterializedSegment],
    timeout: float = ANALYSIS_TIMEOUT_SECONDS,
) -> StageOutcome[TargetLevel]:
    """Measure system voice files and compute the recording target level."""
    measurements = [measure_loudness(s.local_path, timeout) for s in system_voice_segments(segments)]
    target, used_default = compute_target(measurements)

    for segment, measurement in zip(system_voice_segments(segments), measurements, strict=True):
        segment.metrics["loudness"] = {
            "integrated": measurement.integrated,
            "true_peak": measurement.true_peak,
            "loudness_range": measurement.loudness_range,
            "error": measurement.error,
        }

    unmeasured = sum(1 for m in measurements if not m.measured)
    metrics = {
        "target_lufs": round(target, 2),
        "system_files": len(measurements),
        "unmeasured": unmeasured,
        "used_default": used_default,
    }
    logger.info(
        "Target level %.2f LUFS from %d/%d system files%s",
        target,
        len(measurements) - unmeasured,
        len(measurements),
        " (default)" if used_default else "",
    )

    level = TargetLevel(target_lufs=target, measurements=measurements, used_default=used_default)
    if unmeasured:
        return StageOutcome.degraded(
            level,
            PipelineErrorCode.ANALYSIS_FAILED,
            f"{unmeasured} system file(s) could not be measured",
            metrics=metrics,
        )
    return StageOutcome.ok(level, metrics=metrics)


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print(f"Usage: {sys.argv[0]} <audio file> [...]")
        sys.exit(1)

    results = [measure_loudness(arg) for arg in sys.argv[1:]]
    for result in results:
        print(f"{result.path}: I={result.integrated} TP={result.true_peak} LRA={result.loudness_range}")
    target, default = compute_target(results)
    print(f"Target: {target:.2f} LUFS{' (default)' if default else ''}")

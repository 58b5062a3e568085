"""Radio Program Pipeline - Normalizer.

Conforms recording segments (never system files) to the analyzer's target
level. The target is passed in explicitly; there is no shared state
between files.

Chain per recording:
1. speech cleanup: highpass 80 Hz, lowpass 8 kHz, gentle speech mcompand
2. loudnorm analysis pass over the cleaned signal
3. linear loudnorm second pass to the target (TP -1.5 dBTP, LRA 11)

Each file is bounded by NORMALIZE_TIMEOUT_SECONDS. On timeout or engine
error the original file is kept and the outcome for that file is
degraded; the job continues.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from radio.audio.ffmpeg import mp3_output_args, parse_loudnorm_json, run_ffmpeg
from radio.audio.filtergraph import (
    Compand,
    Format,
    HighPass,
    Loudnorm,
    LowPass,
    Op,
    render_chain,
)
from radio.config import (
    LOUDNESS_RANGE_LU,
    NORMALIZE_TIMEOUT_SECONDS,
    NORMALIZE_WORKERS,
    OUTPUT_CHANNELS,
    OUTPUT_SAMPLE_RATE,
    TRUE_PEAK_DBTP,
)
from radio.errors import EngineError, PipelineErrorCode
from radio.outcomes import StageOutcome
from radio.segments import MaterializedSegment

logger = logging.getLogger(__name__)

# Speech cleanup
HIGHPASS_HZ = 80
LOWPASS_HZ = 8000
# Two bands split at 300 Hz; soft knee, about 1.7:1 above -30 dB
SPEECH_COMPAND_BANDS = (
    "0.005,0.1 6 -70/-70,-30/-30,-20/-24,0/-12 300 | "
    "0.003,0.05 6 -70/-70,-30/-30,-20/-24,0/-12 20000"
)


def speech_cleanup_ops() -> list[Op]:
    return [
        Format(OUTPUT_SAMPLE_RATE, OUTPUT_CHANNELS),
        HighPass(HIGHPASS_HZ),
        LowPass(LOWPASS_HZ),
        Compand(SPEECH_COMPAND_BANDS),
    ]


@dataclass
class NormalizeFileResult:
    index: int
    ok: bool
    output_path: Path
    error_code: str | None = None
    message: str | None = None
    elapsed_ms: int = 0


def normalize_file(
    input_path: Path,
    output_path: Path,
    target_lufs: float,
    timeout: float = NORMALIZE_TIMEOUT_SECONDS,
) -> Path:
    """Clean up and loudness-normalize one recording to target_lufs.

    The timeout bounds the whole operation (both passes).

    Raises:
        EngineError: On engine failure or timeout.
    """
    deadline = time.monotonic() + timeout
    cleanup = speech_cleanup_ops()

    analysis = render_chain(
        [*cleanup, Loudnorm(target_lufs, TRUE_PEAK_DBTP, LOUDNESS_RANGE_LU, print_json=True)]
    )
    run = run_ffmpeg(["-i", str(input_path), "-af", analysis, "-f", "null", "-"], timeout)
    measured = parse_loudnorm_json(run.stderr)

    if measured is not None and measured.get("input_i") in ("-inf", "inf"):
        # Silent input: nothing to normalize against
        measured = None

    second = render_chain(
        [*cleanup, Loudnorm(target_lufs, TRUE_PEAK_DBTP, LOUDNESS_RANGE_LU, measured=measured)]
    )
    if measured is None:
        logger.warning("loudnorm analysis unavailable for %s, using single pass", input_path)

    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise EngineError(
            PipelineErrorCode.ENGINE_TIMEOUT, f"normalization exceeded {timeout}s"
        )
    run_ffmpeg(["-i", str(input_path), "-af", second, *mp3_output_args(output_path)], remaining)
    return output_path


def _normalize_one(
    segment: MaterializedSegment, target_lufs: float, timeout: float
) -> NormalizeFileResult:
    source = segment.local_path
    output = source.with_name(f"{source.stem}.normalized.mp3")
    started = time.monotonic()
    try:
        normalize_file(source, output, target_lufs, timeout)
    except EngineError as e:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.error(
            "Normalization failed for segment %d (%s), keeping original: %s",
            segment.original_index,
            source.name,
            e.message,
        )
        return NormalizeFileResult(
            index=segment.original_index,
            ok=False,
            output_path=source,
            error_code=e.error_code,
            message=e.message,
            elapsed_ms=elapsed_ms,
        )
    return NormalizeFileResult(
        index=segment.original_index,
        ok=True,
        output_path=output,
        elapsed_ms=int((time.monotonic() - started) * 1000),
    )


def normalize_recordings(
    segments: list[MaterializedSegment],
    target_lufs: float,
    timeout: float = NORMALIZE_TIMEOUT_SECONDS,
    max_workers: int = NORMALIZE_WORKERS,
) -> StageOutcome[list[MaterializedSegment]]:
    """Normalize every recording segment against target_lufs.

    Returns the same segment list (recordings repointed to their normalized
    files where normalization succeeded). Never fatal.
    """
    recordings = [s for s in segments if s.is_recording]

    if max_workers > 1 and len(recordings) > 1:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="normalize") as pool:
            results = list(pool.map(lambda s: _normalize_one(s, target_lufs, timeout), recordings))
    else:
        results = [_normalize_one(s, target_lufs, timeout) for s in recordings]

    for segment, result in zip(recordings, results, strict=True):
        segment.normalized = result.ok
        segment.local_path = result.output_path
        segment.metrics["normalize"] = {
            "ok": result.ok,
            "error_code": result.error_code,
            "elapsed_ms": result.elapsed_ms,
        }

    failed = [r for r in results if not r.ok]
    metrics = {
        "target_lufs": round(target_lufs, 2),
        "recordings": len(recordings),
        "normalized": len(recordings) - len(failed),
        "skipped": len(failed),
        "skipped_indices": [r.index for r in failed],
    }
    if failed:
        return StageOutcome.degraded(
            segments,
            PipelineErrorCode.NORMALIZE_FAILED,
            f"{len(failed)} recording(s) published un-normalized",
            metrics=metrics,
        )
    return StageOutcome.ok(segments, metrics=metrics)


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 4:
        print(f"Usage: {sys.argv[0]} <input> <output> <target_lufs>")
        sys.exit(1)

    try:
        written = normalize_file(Path(sys.argv[1]), Path(sys.argv[2]), float(sys.argv[3]))
    except EngineError as e:
        print(f"Error: {e.error_code} - {e.message}")
        sys.exit(1)
    print(f"Success: {written}")

"""Radio Program Pipeline - ffmpeg engine boundary.

Every engine invocation goes through run_ffmpeg(), which always applies a
timeout and converts process failures into EngineError with a stable code:

- ENGINE_NOT_FOUND: ffmpeg is not installed / not in PATH
- ENGINE_TIMEOUT: the process exceeded its timeout and was killed
- ENGINE_ERROR: non-zero exit or OS-level failure

Dependencies:
- Requires ffmpeg (and ffprobe for probe_duration) installed and in PATH
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from radio.audio.filtergraph import FilterGraph, Format
from radio.config import (
    FFMPEG_BIN,
    FFPROBE_BIN,
    OUTPUT_BITRATE,
    OUTPUT_CHANNELS,
    OUTPUT_SAMPLE_RATE,
)
from radio.errors import EngineError, PipelineErrorCode

logger = logging.getLogger(__name__)

# Keep only the tail of stderr in error messages
STDERR_TAIL_CHARS = 1000

LOUDNORM_KEYS = {"input_i", "input_tp", "input_lra", "input_thresh", "target_offset"}


@dataclass
class EngineRun:
    """A completed, successful engine invocation."""

    returncode: int
    stderr: str
    elapsed_ms: int


def run_ffmpeg(args: list[str], timeout: float) -> EngineRun:
    """Run ffmpeg with the given arguments.

    Args:
        args: Arguments after the binary name (inputs, filters, output).
        timeout: Hard limit in seconds.

    Returns:
        EngineRun with the decoded stderr (ffmpeg reports analysis there).

    Raises:
        EngineError: On missing binary, timeout, OS error or non-zero exit.
    """
    cmd = [FFMPEG_BIN, "-hide_banner", "-nostdin", "-y", *args]
    logger.debug("Running %s", " ".join(cmd))
    started = time.monotonic()

    try:
        result = subprocess.run(cmd, capture_output=True, check=False, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error("ffmpeg timed out after %s seconds", timeout)
        raise EngineError(
            PipelineErrorCode.ENGINE_TIMEOUT, f"ffmpeg timed out after {timeout}s"
        ) from None
    except FileNotFoundError:
        logger.error("ffmpeg not found in PATH")
        raise EngineError(PipelineErrorCode.ENGINE_NOT_FOUND, "ffmpeg not found in PATH") from None
    except OSError as e:
        logger.error("ffmpeg execution failed: %s", e)
        raise EngineError(PipelineErrorCode.ENGINE_ERROR, f"ffmpeg execution failed: {e}") from e

    elapsed_ms = int((time.monotonic() - started) * 1000)
    stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""

    if result.returncode != 0:
        tail = stderr[-STDERR_TAIL_CHARS:]
        raise EngineError(
            PipelineErrorCode.ENGINE_ERROR,
            f"ffmpeg exited with code {result.returncode}: {tail.strip()}",
            stderr=tail,
        )

    return EngineRun(returncode=result.returncode, stderr=stderr, elapsed_ms=elapsed_ms)


def mp3_output_args(output_path: str | Path) -> list[str]:
    """Encoder arguments for the canonical program format."""
    return [
        "-ar",
        str(OUTPUT_SAMPLE_RATE),
        "-ac",
        str(OUTPUT_CHANNELS),
        "-c:a",
        "libmp3lame",
        "-b:a",
        OUTPUT_BITRATE,
        str(output_path),
    ]


def make_silence(output_path: str | Path, seconds: float, timeout: float = 15) -> Path:
    """Synthesize digital silence in the canonical format."""
    layout = "stereo" if OUTPUT_CHANNELS == 2 else "mono"
    args = [
        "-f",
        "lavfi",
        "-t",
        f"{seconds:g}",
        "-i",
        f"anullsrc=channel_layout={layout}:sample_rate={OUTPUT_SAMPLE_RATE}",
        *mp3_output_args(output_path),
    ]
    run_ffmpeg(args, timeout)
    return Path(output_path)


def concat_files(inputs: list[Path], output_path: str | Path, timeout: float) -> Path:
    """Concatenate audio files in list order, re-encoding to the canonical format."""
    if not inputs:
        raise ValueError("concat_files needs at least one input")
    graph = FilterGraph()
    streams = [
        graph.chain(graph.input(path), Format(OUTPUT_SAMPLE_RATE, OUTPUT_CHANNELS))
        for path in inputs
    ]
    out = graph.concat(streams)
    run_ffmpeg([*graph.compile(out), *mp3_output_args(output_path)], timeout)
    return Path(output_path)


def parse_loudnorm_json(stderr_text: str) -> dict | None:
    """Extract the loudnorm print_format=json payload from ffmpeg stderr."""
    matches = re.findall(r"\{[^{}]*\}", stderr_text)
    for candidate in reversed(matches):
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict) and LOUDNORM_KEYS.issubset(payload.keys()):
            return payload
    return None


def probe_duration(path: str | Path, timeout: float = 10) -> float | None:
    """Best-effort container duration in seconds (None if unknown)."""
    cmd = [
        FFPROBE_BIN,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, check=False, timeout=timeout)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning("ffprobe failed for %s: %s", path, e)
        return None
    if result.returncode != 0:
        return None
    try:
        return float(result.stdout.decode("utf-8", errors="replace").strip())
    except ValueError:
        return None

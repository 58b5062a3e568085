"""Radio Program Pipeline - Timeline Assembler.

Orders materialized segments, lays the looped background bed under every
covered run and encodes the master.

Timeline rules:
- Segments play in original_index order.
- Boundary roles (opening_jingle, boundary_jingle, closing) are never
  covered by background music.
- Each maximal run of consecutive non-boundary segments is concatenated
  into one content stream and mixed with the background, looped forever
  and attenuated to BACKGROUND_VOLUME; the mix lasts exactly as long as
  the content.
- Below MIN_SEGMENTS_FOR_BACKGROUND segments, or without a background
  track, everything is concatenated without mixing.

Output: stereo, 44.1 kHz, CBR 128 kbps MP3.

Error codes:
- ASSEMBLY_TIMEOUT: the encode exceeded ASSEMBLY_TIMEOUT_SECONDS
- ASSEMBLY_FAILED: any other engine failure or an inconsistent input list
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from radio.audio.ffmpeg import mp3_output_args, probe_duration, run_ffmpeg
from radio.audio.filtergraph import FilterGraph, Format, Gain, Loop, Stream
from radio.config import (
    ASSEMBLY_TIMEOUT_SECONDS,
    BACKGROUND_VOLUME,
    MIN_SEGMENTS_FOR_BACKGROUND,
    OUTPUT_CHANNELS,
    OUTPUT_SAMPLE_RATE,
)
from radio.errors import AssemblyError, EngineError, PipelineErrorCode
from radio.outcomes import StageOutcome
from radio.segments import BOUNDARY_ROLES, MaterializedKind, MaterializedSegment, Role

logger = logging.getLogger(__name__)


@dataclass
class TimelinePart:
    """A contiguous slice of the program; covered parts get the bed."""

    covered: bool
    indices: list[int]


@dataclass
class AssembledProgram:
    output_path: Path
    parts: list[TimelinePart]
    mixed: bool
    duration_sec: float | None = None


def plan_timeline(segments: list[MaterializedSegment], with_background: bool) -> list[TimelinePart]:
    """Split the ordered segments into boundary parts and covered runs.

    Without background every segment is its own uncovered part.
    """
    parts: list[TimelinePart] = []
    for segment in segments:
        covered = with_background and segment.role not in BOUNDARY_ROLES
        if covered and parts and parts[-1].covered:
            parts[-1].indices.append(segment.original_index)
        else:
            parts.append(TimelinePart(covered=covered, indices=[segment.original_index]))
    return parts


def ordered_segments(segments: list[MaterializedSegment]) -> list[MaterializedSegment]:
    """Segments in original order; the indices must be exactly 0..n-1.

    Raises:
        AssemblyError: If indices are missing or duplicated.
    """
    ordered = sorted(segments, key=lambda s: s.original_index)
    if [s.original_index for s in ordered] != list(range(len(ordered))):
        raise AssemblyError(
            PipelineErrorCode.ASSEMBLY_FAILED,
            "materialized segments do not cover every input position exactly once",
        )
    return ordered


def build_program_graph(
    segments: list[MaterializedSegment],
    background_path: Path | None,
    background_volume: float = BACKGROUND_VOLUME,
    min_segments: int = MIN_SEGMENTS_FOR_BACKGROUND,
) -> tuple[FilterGraph, Stream, list[TimelinePart]]:
    """Describe the whole program as a filter graph."""
    ordered = ordered_segments(segments)
    with_background = background_path is not None and len(ordered) >= min_segments
    parts = plan_timeline(ordered, with_background)

    graph = FilterGraph()
    conform = Format(OUTPUT_SAMPLE_RATE, OUTPUT_CHANNELS)
    streams = {s.original_index: graph.chain(graph.input(s.local_path), conform) for s in ordered}

    rendered: list[Stream] = []
    for part in parts:
        content = graph.concat([streams[i] for i in part.indices])
        if part.covered:
            bed = graph.chain(graph.input(background_path), conform, Loop(), Gain(background_volume))
            content = graph.mix([content, bed], duration="first")
        rendered.append(content)

    output = graph.concat(rendered)
    return graph, output, parts


def assemble_program(
    segments: list[MaterializedSegment],
    output_path: Path,
    background_path: Path | None = None,
    timeout: float = ASSEMBLY_TIMEOUT_SECONDS,
) -> StageOutcome[AssembledProgram]:
    """Encode the final master. Any failure here is fatal."""
    if not segments:
        return StageOutcome.fatal(PipelineErrorCode.ASSEMBLY_FAILED, "no segments to assemble")

    try:
        graph, output, parts = build_program_graph(segments, background_path)
    except AssemblyError as e:
        return StageOutcome.fatal(e.error_code, e.message)

    mixed = any(part.covered for part in parts)
    if background_path is not None and not mixed:
        logger.info("Background mixing skipped (%d segments)", len(segments))

    try:
        run = run_ffmpeg([*graph.compile(output), *mp3_output_args(output_path)], timeout)
    except EngineError as e:
        code = (
            PipelineErrorCode.ASSEMBLY_TIMEOUT
            if e.error_code == PipelineErrorCode.ENGINE_TIMEOUT
            else PipelineErrorCode.ASSEMBLY_FAILED
        )
        logger.error("Assembly failed: %s", e.message)
        return StageOutcome.fatal(code, f"Assembly failed: {e.message}")

    duration = probe_duration(output_path)
    program = AssembledProgram(
        output_path=Path(output_path),
        parts=parts,
        mixed=mixed,
        duration_sec=duration,
    )
    metrics = {
        "segments": len(segments),
        "parts": len(parts),
        "covered_runs": sum(1 for p in parts if p.covered),
        "mixed": mixed,
        "encode_ms": run.elapsed_ms,
        "duration_sec": duration,
    }
    logger.info(
        "Assembled %d segments into %s (%d parts, mixed=%s, %dms)",
        len(segments),
        output_path,
        len(parts),
        mixed,
        run.elapsed_ms,
    )
    return StageOutcome.ok(program, metrics=metrics)


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    args = sys.argv[1:]
    background = None
    if len(args) >= 2 and args[0] == "--background":
        background = Path(args[1])
        args = args[2:]
    if len(args) < 2:
        print(f"Usage: {sys.argv[0]} [--background <bed>] <output> <segment> [...]")
        sys.exit(1)

    # First file opens, last file closes, everything between is content
    inputs = args[1:]
    cli_segments = []
    for index, name in enumerate(inputs):
        if index == 0:
            role = Role.OPENING_JINGLE
        elif index == len(inputs) - 1:
            role = Role.CLOSING
        else:
            role = Role.RECORDING
        cli_segments.append(MaterializedSegment(Path(name), MaterializedKind.SINGLE, index, role))

    result = assemble_program(cli_segments, Path(args[0]), background_path=background)
    if result.is_fatal:
        print(f"Error: {result.error_code} - {result.message}")
        sys.exit(1)
    print(f"Success: {result.value.output_path}")
    print(f"Duration: {result.value.duration_sec}s, parts: {len(result.value.parts)}")

"""Tests for the timeline assembler (services/worker_assemble/run.py)."""

from pathlib import Path
from unittest import mock

from radio.audio.ffmpeg import EngineRun
from radio.errors import EngineError, PipelineErrorCode
from radio.segments import MaterializedKind, MaterializedSegment, Role
from services.worker_assemble.run import (
    assemble_program,
    build_program_graph,
    plan_timeline,
)

BED = Path("/work/background.mp3")


def _seg(index: int, role: Role) -> MaterializedSegment:
    return MaterializedSegment(
        local_path=Path(f"/work/{index:03d}.mp3"),
        kind=MaterializedKind.SINGLE,
        original_index=index,
        role=role,
    )


def _program() -> list[MaterializedSegment]:
    roles = [
        Role.OPENING_JINGLE,
        Role.PROMPT,
        Role.RECORDING,
        Role.SILENCE,
        Role.BOUNDARY_JINGLE,
        Role.PROMPT,
        Role.RECORDING,
        Role.CLOSING,
    ]
    return [_seg(i, role) for i, role in enumerate(roles)]


class TestPlanTimeline:
    def test_boundaries_split_covered_runs(self):
        parts = plan_timeline(_program(), with_background=True)
        assert [(p.covered, p.indices) for p in parts] == [
            (False, [0]),
            (True, [1, 2, 3]),
            (False, [4]),
            (True, [5, 6]),
            (False, [7]),
        ]

    def test_without_background_nothing_covered(self):
        parts = plan_timeline(_program(), with_background=False)
        assert all(not p.covered for p in parts)
        assert [i for p in parts for i in p.indices] == list(range(8))


class TestBuildProgramGraph:
    def test_bed_only_under_covered_runs(self):
        graph, output, parts = build_program_graph(_program(), BED)
        kinds = [kind for kind, _, _ in graph.describe()]

        assert kinds.count("mix") == 2
        # One bed input per covered run, after the 8 segment inputs
        assert graph.inputs[:8] == [Path(f"/work/{i:03d}.mp3") for i in range(8)]
        assert graph.inputs[8:] == [BED, BED]
        rendered = graph.render()
        assert "aloop=loop=-1:size=2e+09,volume=0.2" in rendered
        assert "duration=first" in rendered
        assert rendered.endswith(f"concat=n=5:v=0:a=1[{output.label}]")

    def test_order_follows_original_index(self):
        """Input order is restored from original_index."""
        shuffled = list(reversed(_program()))
        graph, _, _ = build_program_graph(shuffled, None)
        assert graph.inputs == [Path(f"/work/{i:03d}.mp3") for i in range(8)]

    def test_too_few_segments_skip_background(self):
        segments = [_seg(0, Role.PROMPT), _seg(1, Role.RECORDING)]
        graph, _, parts = build_program_graph(segments, BED, min_segments=3)
        assert not any(p.covered for p in parts)
        assert BED not in graph.inputs

    def test_no_background(self):
        graph, _, _ = build_program_graph(_program(), None)
        assert "amix" not in graph.render()


class TestAssembleProgram:
    def test_success(self, tmp_path):
        with (
            mock.patch(
                "services.worker_assemble.run.run_ffmpeg",
                return_value=EngineRun(returncode=0, stderr="", elapsed_ms=42),
            ) as run,
            mock.patch("services.worker_assemble.run.probe_duration", return_value=61.5),
        ):
            outcome = assemble_program(_program(), tmp_path / "program.mp3", background_path=BED)

        assert not outcome.is_fatal
        assert outcome.value.mixed is True
        assert outcome.metrics["covered_runs"] == 2
        assert outcome.metrics["duration_sec"] == 61.5
        args = run.call_args.args[0]
        assert args[-1] == str(tmp_path / "program.mp3")
        assert "libmp3lame" in args

    def test_timeout_is_fatal(self, tmp_path):
        with mock.patch(
            "services.worker_assemble.run.run_ffmpeg",
            side_effect=EngineError(PipelineErrorCode.ENGINE_TIMEOUT, "timed out"),
        ):
            outcome = assemble_program(_program(), tmp_path / "program.mp3")
        assert outcome.is_fatal
        assert outcome.error_code == PipelineErrorCode.ASSEMBLY_TIMEOUT

    def test_engine_error_is_fatal(self, tmp_path):
        with mock.patch(
            "services.worker_assemble.run.run_ffmpeg",
            side_effect=EngineError(PipelineErrorCode.ENGINE_ERROR, "bad input"),
        ):
            outcome = assemble_program(_program(), tmp_path / "program.mp3")
        assert outcome.error_code == PipelineErrorCode.ASSEMBLY_FAILED

    def test_inconsistent_indices(self, tmp_path):
        segments = [_seg(0, Role.PROMPT), _seg(2, Role.RECORDING)]
        outcome = assemble_program(segments, tmp_path / "program.mp3")
        assert outcome.is_fatal
        assert outcome.error_code == PipelineErrorCode.ASSEMBLY_FAILED

    def test_empty(self, tmp_path):
        assert assemble_program([], tmp_path / "program.mp3").is_fatal

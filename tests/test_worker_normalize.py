"""Tests for the normalizer (services/worker_normalize/run.py)."""

from pathlib import Path
from unittest import mock

import pytest

from radio.audio.ffmpeg import EngineRun
from radio.errors import EngineError, PipelineErrorCode
from radio.segments import MaterializedKind, MaterializedSegment, Role
from services.worker_normalize.run import normalize_file, normalize_recordings

PAYLOAD = """{
  "input_i" : "-24.00",
  "input_tp" : "-5.00",
  "input_lra" : "3.00",
  "input_thresh" : "-34.00",
  "target_offset" : "0.20"
}"""


def _segment(tmp_path: Path, index: int, role: Role) -> MaterializedSegment:
    path = tmp_path / f"{index:03d}.mp3"
    path.write_bytes(b"audio")
    return MaterializedSegment(
        local_path=path,
        kind=MaterializedKind.ANSWERS if role == Role.RECORDING else MaterializedKind.SINGLE,
        original_index=index,
        role=role,
    )


def _engine_ok(args, timeout):
    return EngineRun(returncode=0, stderr=PAYLOAD, elapsed_ms=3)


class TestNormalizeFile:
    def test_two_passes(self, tmp_path):
        with mock.patch("services.worker_normalize.run.run_ffmpeg", side_effect=_engine_ok) as run:
            normalize_file(tmp_path / "in.mp3", tmp_path / "out.mp3", target_lufs=-18.25)

        assert run.call_count == 2
        analysis_args = run.call_args_list[0].args[0]
        second_args = run.call_args_list[1].args[0]
        analysis = analysis_args[analysis_args.index("-af") + 1]
        second = second_args[second_args.index("-af") + 1]

        assert "highpass=f=80" in analysis
        assert "lowpass=f=8000" in analysis
        assert "mcompand=" in analysis
        assert "loudnorm=I=-18.25:TP=-1.5:LRA=11:print_format=json" in analysis
        assert "measured_I=-24.00" in second
        assert "linear=true" in second
        assert second_args[-1] == str(tmp_path / "out.mp3")

    def test_silent_input_single_pass(self, tmp_path):
        payload = PAYLOAD.replace('"-24.00"', '"-inf"')
        with mock.patch(
            "services.worker_normalize.run.run_ffmpeg",
            return_value=EngineRun(returncode=0, stderr=payload, elapsed_ms=1),
        ) as run:
            normalize_file(tmp_path / "in.mp3", tmp_path / "out.mp3", target_lufs=-16)
        second_args = run.call_args_list[1].args[0]
        assert "measured_I" not in second_args[second_args.index("-af") + 1]

    def test_engine_error_propagates(self, tmp_path):
        with mock.patch(
            "services.worker_normalize.run.run_ffmpeg",
            side_effect=EngineError(PipelineErrorCode.ENGINE_TIMEOUT, "timed out"),
        ):
            with pytest.raises(EngineError):
                normalize_file(tmp_path / "in.mp3", tmp_path / "out.mp3", target_lufs=-16)


class TestNormalizeRecordings:
    def test_only_recordings_touched(self, tmp_path):
        """System files are never normalized."""
        segments = [
            _segment(tmp_path, 0, Role.OPENING_JINGLE),
            _segment(tmp_path, 1, Role.PROMPT),
            _segment(tmp_path, 2, Role.RECORDING),
            _segment(tmp_path, 3, Role.CLOSING),
        ]
        originals = [s.local_path for s in segments]

        with mock.patch("services.worker_normalize.run.run_ffmpeg", side_effect=_engine_ok) as run:
            outcome = normalize_recordings(segments, target_lufs=-18.0)

        assert run.call_count == 2
        assert not outcome.is_degraded
        assert segments[2].normalized is True
        assert segments[2].local_path.name == "002.normalized.mp3"
        assert [s.local_path for i, s in enumerate(segments) if i != 2] == [
            originals[0],
            originals[1],
            originals[3],
        ]
        assert outcome.metrics["normalized"] == 1

    def test_timeout_keeps_original(self, tmp_path):
        """A timeout degrades that file only; the original is used."""
        segments = [_segment(tmp_path, 0, Role.RECORDING), _segment(tmp_path, 1, Role.RECORDING)]
        original = segments[0].local_path

        def engine(args, timeout):
            if args[args.index("-i") + 1] == str(original):
                raise EngineError(PipelineErrorCode.ENGINE_TIMEOUT, "timed out after 25s")
            return _engine_ok(args, timeout)

        with mock.patch("services.worker_normalize.run.run_ffmpeg", side_effect=engine):
            outcome = normalize_recordings(segments, target_lufs=-18.0)

        assert outcome.is_degraded
        assert not outcome.is_fatal
        assert outcome.error_code == PipelineErrorCode.NORMALIZE_FAILED
        assert segments[0].local_path == original
        assert segments[0].normalized is False
        assert segments[0].metrics["normalize"]["error_code"] == PipelineErrorCode.ENGINE_TIMEOUT
        assert segments[1].normalized is True
        assert outcome.metrics["skipped_indices"] == [0]

    def test_parallel_workers(self, tmp_path):
        segments = [_segment(tmp_path, i, Role.RECORDING) for i in range(4)]
        with mock.patch("services.worker_normalize.run.run_ffmpeg", side_effect=_engine_ok):
            outcome = normalize_recordings(segments, target_lufs=-18.0, max_workers=3)
        assert outcome.metrics["normalized"] == 4
        assert all(s.normalized for s in segments)

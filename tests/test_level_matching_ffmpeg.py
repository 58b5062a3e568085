"""End-to-end loudness matching with a real ffmpeg.

Skipped when ffmpeg is not installed.
"""

import shutil
import subprocess
from pathlib import Path

import pytest

from radio.segments import MaterializedKind, MaterializedSegment, Role
from services.worker_loudness.run import analyze_program, measure_loudness
from services.worker_normalize.run import normalize_file, normalize_recordings

pytestmark = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")


def _noise(path: Path, seconds: int = 6, amplitude: float = 0.3) -> Path:
    subprocess.run(
        [
            "ffmpeg", "-hide_banner", "-nostdin", "-y",
            "-f", "lavfi",
            "-i", f"anoisesrc=color=pink:amplitude={amplitude}:duration={seconds}:seed=7",
            "-ac", "2", "-ar", "44100", "-c:a", "libmp3lame", "-b:a", "128k",
            str(path),
        ],
        check=True,
        capture_output=True,
        timeout=60,
    )
    return path


def _at_level(tmp_path: Path, name: str, lufs: float) -> Path:
    raw = _noise(tmp_path / f"{name}.raw.mp3")
    return normalize_file(raw, tmp_path / f"{name}.mp3", target_lufs=lufs, timeout=60)


def _seg(index: int, role: Role, path: Path) -> MaterializedSegment:
    return MaterializedSegment(
        local_path=path, kind=MaterializedKind.SINGLE, original_index=index, role=role
    )


def test_recording_matches_system_voice_mean(tmp_path):
    """System files at -20 and -16 LUFS pull a recording to about -18 LUFS."""
    prompt = _at_level(tmp_path, "prompt", -20.0)
    closing = _at_level(tmp_path, "closing", -16.0)
    recording = _noise(tmp_path / "recording.mp3", amplitude=0.05)

    segments = [
        _seg(0, Role.PROMPT, prompt),
        _seg(1, Role.RECORDING, recording),
        _seg(2, Role.CLOSING, closing),
    ]
    analysis = analyze_program(segments, timeout=60)
    assert analysis.value.target_lufs == pytest.approx(-18.0, abs=1.0)

    outcome = normalize_recordings(segments, analysis.value.target_lufs, timeout=60)
    assert not outcome.is_degraded

    result = measure_loudness(segments[1].local_path, timeout=60)
    assert result.integrated == pytest.approx(-18.0, abs=1.0)

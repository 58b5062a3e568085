"""Tests for radio.utils.atomic_io module."""

import threading
from unittest import mock

import pytest

from radio.utils.atomic_io import (
    atomic_copy_file,
    atomic_write_bytes,
    atomic_write_chunks,
    cleanup_orphan_temp_files,
)


class TestAtomicWrite:
    def test_write_bytes_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "file.bin"
        atomic_write_bytes(target, b"payload")
        assert target.read_bytes() == b"payload"

    def test_overwrites(self, tmp_path):
        target = tmp_path / "file.json"
        atomic_write_bytes(target, b"old")
        atomic_write_bytes(target, b"new")
        assert target.read_bytes() == b"new"

    def test_chunks_return_total(self, tmp_path):
        target = tmp_path / "chunks.bin"
        assert atomic_write_chunks(target, [b"ab", b"cde", b""]) == 5
        assert target.read_bytes() == b"abcde"

    def test_no_temp_file_left(self, tmp_path):
        target = tmp_path / "file.bin"
        atomic_write_bytes(target, b"x")
        assert [p.name for p in tmp_path.iterdir()] == ["file.bin"]

    def test_failure_keeps_previous_content(self, tmp_path):
        """A failing chunk source leaves the old file untouched and no temp file."""
        target = tmp_path / "file.bin"
        atomic_write_bytes(target, b"original")

        def broken_chunks():
            yield b"partial"
            raise OSError("connection reset")

        with pytest.raises(OSError):
            atomic_write_chunks(target, broken_chunks())

        assert target.read_bytes() == b"original"
        assert list(tmp_path.glob("*.tmp")) == []

    def test_rename_failure_propagates(self, tmp_path):
        target = tmp_path / "file.bin"
        with mock.patch("radio.utils.atomic_io.os.replace", side_effect=OSError("EXDEV")):
            with pytest.raises(OSError):
                atomic_write_bytes(target, b"x")
        assert not target.exists()
        assert list(tmp_path.glob("*.tmp")) == []

    def test_concurrent_writers_same_path(self, tmp_path):
        """Writers racing on one path never corrupt each other's temp file."""
        target = tmp_path / "manifest.json"
        payloads = [bytes([65 + i]) * 50_000 for i in range(8)]
        errors = []

        def write(data):
            chunks = [data[i : i + 1000] for i in range(0, len(data), 1000)]
            try:
                atomic_write_chunks(target, chunks)
            except OSError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=write, args=(p,)) for p in payloads]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert target.read_bytes() in payloads
        assert list(tmp_path.glob("*.tmp")) == []


class TestAtomicCopy:
    def test_copy(self, tmp_path):
        source = tmp_path / "src.mp3"
        source.write_bytes(b"\x00" * 200_000)
        dest = tmp_path / "out" / "dst.mp3"

        assert atomic_copy_file(source, dest, chunk_size=4096) == 200_000
        assert dest.read_bytes() == source.read_bytes()

    def test_missing_source(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            atomic_copy_file(tmp_path / "missing", tmp_path / "dst")


class TestCleanupOrphanTempFiles:
    def test_recursive(self, tmp_path):
        (tmp_path / "nested").mkdir()
        (tmp_path / "a.tmp").write_bytes(b"")
        (tmp_path / "nested" / "b.mp3.tmp").write_bytes(b"")
        (tmp_path / "nested" / "keep.mp3").write_bytes(b"")

        assert cleanup_orphan_temp_files(tmp_path) == 2
        assert (tmp_path / "nested" / "keep.mp3").exists()

    def test_missing_directory(self, tmp_path):
        assert cleanup_orphan_temp_files(tmp_path / "missing") == 0

"""Radio Program Pipeline - Atomic file writes.

Every file the pipeline hands to someone else (downloaded segments, local
object storage, manifests) is written to a uniquely named {name}.*.tmp next
to its final path, fsynced, then renamed into place. Readers therefore see
either the complete previous file or the complete new one, never a partial
write, and concurrent writers of the same path never share a temp file.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"
COPY_CHUNK_SIZE = 64 * 1024


def _fsync_directory(dir_path: Path) -> None:
    # O_DIRECTORY is POSIX only; elsewhere the rename is left to the OS
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(dir_path, flags)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", dir_path)
    finally:
        os.close(fd)


def atomic_write_chunks(final_path: str | Path, chunks: Iterable[bytes]) -> int:
    """Stream chunks into final_path atomically.

    On any failure (including a failing chunk source) the temp file is
    removed, the exception propagates and final_path is left untouched.

    Returns:
        Total bytes written.
    """
    final_path = Path(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=final_path.parent, prefix=f"{final_path.name}.", suffix=TEMP_SUFFIX
    )
    temp_path = Path(temp_name)

    total = 0
    try:
        with os.fdopen(fd, "wb") as out:
            for chunk in chunks:
                out.write(chunk)
                total += len(chunk)
            out.flush()
            os.fsync(out.fileno())
        os.replace(temp_path, final_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    _fsync_directory(final_path.parent)
    return total


def atomic_write_bytes(final_path: str | Path, data: bytes) -> None:
    atomic_write_chunks(final_path, (data,))


def _read_chunks(path: Path, chunk_size: int) -> Iterator[bytes]:
    with open(path, "rb") as source:
        while chunk := source.read(chunk_size):
            yield chunk


def atomic_copy_file(
    source_path: str | Path,
    final_path: str | Path,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> int:
    """Copy source_path to final_path atomically.

    Raises:
        FileNotFoundError: If the source does not exist.
    """
    source_path = Path(source_path)
    if not source_path.is_file():
        raise FileNotFoundError(f"Source file not found: {source_path}")
    return atomic_write_chunks(final_path, _read_chunks(source_path, chunk_size))


def cleanup_orphan_temp_files(directory: str | Path) -> int:
    """Delete temp files left under directory by interrupted writes.

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    removed = 0
    for temp_file in directory.rglob(f"*{TEMP_SUFFIX}"):
        if temp_file.is_file():
            temp_file.unlink(missing_ok=True)
            removed += 1
    return removed

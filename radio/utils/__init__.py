"""Radio Program Pipeline - Utility modules."""

from radio.utils.atomic_io import (
    atomic_copy_file,
    atomic_write_bytes,
    atomic_write_chunks,
)
from radio.utils.paths import (
    combined_manifest_path,
    filename_from_url,
    job_work_dir,
    program_object_path,
    variant_manifest_path,
)

__all__ = [
    # atomic_io
    "atomic_write_bytes",
    "atomic_write_chunks",
    "atomic_copy_file",
    # paths
    "program_object_path",
    "variant_manifest_path",
    "combined_manifest_path",
    "job_work_dir",
    "filename_from_url",
]

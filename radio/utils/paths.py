"""Radio Program Pipeline - Canonical path utilities.

Object storage keys per generation key, plus local scratch directories.
Does NOT create directories; that is the caller's responsibility.
"""

from pathlib import Path
from urllib.parse import unquote, urlsplit

from radio.config import WORK_DIR, WORK_DIR_PREFIX
from radio.segments import GenerationKey


def program_object_path(key: GenerationKey) -> str:
    """Deterministic, overwritable path of the published program.

    Returns:
        /{language}/{owner_id}/{world}/radio-program-{variant}-{world}-{owner_id}.mp3
    """
    return (
        f"{key.storage_prefix}/radio-program-{key.variant}-{key.world}-{key.owner_id}.mp3"
    )


def variant_manifest_path(key: GenerationKey) -> str:
    """Returns: /{language}/{owner_id}/{world}/last-program-manifest-{variant}.json"""
    return f"{key.storage_prefix}/last-program-manifest-{key.variant}.json"


def combined_manifest_path(key: GenerationKey) -> str:
    """Returns: /{language}/{owner_id}/{world}/last-program-manifest.json"""
    return f"{key.storage_prefix}/last-program-manifest.json"


def job_work_dir(job_id: str, root: Path | None = None) -> Path:
    """Exclusive scratch directory for one job: {WORK_DIR}/job-{job_id}."""
    return (root if root is not None else WORK_DIR) / f"{WORK_DIR_PREFIX}{job_id}"


def filename_from_url(url: str) -> str:
    """Last path component of a URL, without query string or fragment."""
    path = urlsplit(url).path
    return unquote(path.rsplit("/", 1)[-1])

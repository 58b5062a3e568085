"""Radio Program Pipeline - Configuration constants.

No external config libraries. Every tunable has a default and can be
overridden with a RADIO_* environment variable, read once at import.
All paths are relative to the repository root by default.
"""

import os
from pathlib import Path

# Repository root (parent of radio/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_int(name: str, default: int, minimum: int = 1) -> int:
    """Get a positive integer from the environment or use default.

    Invalid or out-of-range values fall back to the default.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.
        minimum: Smallest accepted value.

    Returns:
        The resolved integer.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value >= minimum:
                return value
        except ValueError:
            pass
    return default


def _get_float(name: str, default: float) -> float:
    """Get a float from the environment or use default."""
    env_val = os.environ.get(name)
    if env_val:
        try:
            return float(env_val)
        except ValueError:
            pass
    return default


def _get_path(name: str, default: Path) -> Path:
    env_val = os.environ.get(name)
    return Path(env_val) if env_val else default


# Data directories
DATA_DIR = _get_path("RADIO_DATA_DIR", REPO_ROOT / "data")

# Database path
DB_PATH = DATA_DIR / "radio.db"

# SQLite busy timeout shared by the API and the consumer
DB_BUSY_TIMEOUT_MS = _get_int("RADIO_DB_BUSY_TIMEOUT_MS", 30000)

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# Per-job scratch space; each job gets an exclusive subdirectory
WORK_DIR = _get_path("RADIO_WORK_DIR", DATA_DIR / "work")
WORK_DIR_PREFIX = "job-"

# Local object storage root (used when RADIO_STORAGE_BACKEND=local)
STORAGE_DIR = _get_path("RADIO_STORAGE_DIR", DATA_DIR / "storage")

# --- Object storage ---

# "local" (filesystem, offline-first) or "http" (PUT-overwrite storage zone)
STORAGE_BACKEND = os.environ.get("RADIO_STORAGE_BACKEND", "local")
STORAGE_ENDPOINT = os.environ.get("RADIO_STORAGE_ENDPOINT", "https://storage.bunnycdn.com")
STORAGE_ZONE = os.environ.get("RADIO_STORAGE_ZONE", "")
STORAGE_API_KEY = os.environ.get("RADIO_STORAGE_API_KEY", "")
# Public base URL for published objects (CDN pull zone or local file server)
CDN_URL = os.environ.get("RADIO_CDN_URL", "http://localhost:8000/storage")

# --- Generation lock ---

# Lock TTL: a secondary safety net; the worker always releases explicitly.
# Override with RADIO_LOCK_TTL_SEC for testing.
LOCK_TTL_SECONDS = _get_int("RADIO_LOCK_TTL_SEC", 900)

# --- Job queue ---

# Number of jobs claimed per sweep (FIFO)
SWEEP_BATCH_SIZE = _get_int("RADIO_SWEEP_BATCH_SIZE", 1)
# Upper bound on jobs in processing at once; run the consumer with -w <= this
MAX_CONCURRENT_JOBS = _get_int("RADIO_MAX_CONCURRENT_JOBS", 1)

# --- Materializer ---

DOWNLOAD_TIMEOUT_SECONDS = _get_float("RADIO_DOWNLOAD_TIMEOUT_SEC", 30.0)
# Segment sources are only ever fetched over these schemes
DOWNLOAD_SCHEMES = ("http", "https")

DOWNLOAD_ATTEMPTS = _get_int("RADIO_DOWNLOAD_ATTEMPTS", 3)
DOWNLOAD_RETRY_DELAY_SECONDS = _get_float("RADIO_DOWNLOAD_RETRY_DELAY_SEC", 1.0)
DOWNLOAD_WORKERS = _get_int("RADIO_DOWNLOAD_WORKERS", 4)

# Default silence length for pause-like segments
DEFAULT_SILENCE_SECONDS = 2

# Placeholder durations for missing system assets
PLACEHOLDER_BACKGROUND_SECONDS = 30
PLACEHOLDER_PROMPT_SECONDS = 5
PLACEHOLDER_DEFAULT_SECONDS = 3

# --- Loudness ---

DEFAULT_TARGET_LUFS = _get_float("RADIO_DEFAULT_TARGET_LUFS", -16.0)
ANALYSIS_TIMEOUT_SECONDS = _get_int("RADIO_ANALYSIS_TIMEOUT_SEC", 15)
NORMALIZE_TIMEOUT_SECONDS = _get_int("RADIO_NORMALIZE_TIMEOUT_SEC", 25)
NORMALIZE_WORKERS = _get_int("RADIO_NORMALIZE_WORKERS", 1)
TRUE_PEAK_DBTP = -1.5
LOUDNESS_RANGE_LU = 11.0

# --- Assembly ---

ASSEMBLY_TIMEOUT_SECONDS = _get_int("RADIO_ASSEMBLY_TIMEOUT_SEC", 60)
BACKGROUND_VOLUME = _get_float("RADIO_BACKGROUND_VOLUME", 0.2)
MIN_SEGMENTS_FOR_BACKGROUND = _get_int("RADIO_MIN_SEGMENTS_FOR_BACKGROUND", 3)

# Canonical output format
OUTPUT_SAMPLE_RATE = 44100
OUTPUT_CHANNELS = 2
OUTPUT_BITRATE = "128k"

# --- Publisher / manifests ---

MANIFEST_VERSION = "2.0"
ERROR_COOLDOWN_SECONDS = _get_int("RADIO_ERROR_COOLDOWN_SEC", 300)
ERROR_COOLDOWN_MAX_SECONDS = _get_int("RADIO_ERROR_COOLDOWN_MAX_SEC", 3600)

# The combined manifest is shared by all variants of a key; merges hold a
# short-lived DB lock and retry while another variant is merging
MANIFEST_LOCK_TTL_SECONDS = _get_int("RADIO_MANIFEST_LOCK_TTL_SEC", 60)
MANIFEST_LOCK_ATTEMPTS = _get_int("RADIO_MANIFEST_LOCK_ATTEMPTS", 40)
MANIFEST_LOCK_RETRY_SECONDS = _get_float("RADIO_MANIFEST_LOCK_RETRY_SEC", 0.25)

# Program variants with their recording filename conventions
VARIANTS = ("kids", "parent")

# --- Audio engine ---

FFMPEG_BIN = os.environ.get("RADIO_FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.environ.get("RADIO_FFPROBE_BIN", "ffprobe")

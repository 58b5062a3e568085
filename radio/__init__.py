"""Radio Program Pipeline - Core application modules.

Provides:
- SQLite models and DB primitives (jobs, generation locks)
- Generation lock and job queue discipline
- Manifests, object storage and recording listing
- Engine-agnostic audio filter graphs and the ffmpeg boundary
"""

__version__ = "0.1.0"

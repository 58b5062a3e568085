"""Radio Program Pipeline - Error taxonomy.

Every pipeline failure carries a stable error code plus a human-readable
message. Codes end up in GenerationJob.error_code and in error manifests.
"""

from enum import StrEnum


class PipelineErrorCode(StrEnum):
    """Error codes for the generation pipeline."""

    # Materializer
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    RECORDING_MISSING = "RECORDING_MISSING"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    # Engine boundary
    ENGINE_NOT_FOUND = "ENGINE_NOT_FOUND"
    ENGINE_TIMEOUT = "ENGINE_TIMEOUT"
    ENGINE_ERROR = "ENGINE_ERROR"
    # Loudness
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    NORMALIZE_FAILED = "NORMALIZE_FAILED"
    # Assembler
    ASSEMBLY_FAILED = "ASSEMBLY_FAILED"
    ASSEMBLY_TIMEOUT = "ASSEMBLY_TIMEOUT"
    # Publisher
    UPLOAD_FAILED = "UPLOAD_FAILED"
    MANIFEST_WRITE_FAILED = "MANIFEST_WRITE_FAILED"
    # Worker
    WORKER_ERROR = "WORKER_ERROR"
    WORKER_LOST = "WORKER_LOST"


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class DownloadError(PipelineError):
    """Remote object could not be fetched."""

    def __init__(self, url: str, reason: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(PipelineErrorCode.DOWNLOAD_FAILED, f"Download failed for {url}: {reason}")


class RecordingMissingError(PipelineError):
    """A user recording could not be fetched. Never replaced by a placeholder."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(
            PipelineErrorCode.RECORDING_MISSING, f"Recording unavailable {url}: {reason}"
        )


class EngineError(PipelineError):
    """The audio engine could not be run or exited with an error."""

    def __init__(self, error_code: str, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(error_code, message)


class AssemblyError(PipelineError):
    """Final master could not be produced."""

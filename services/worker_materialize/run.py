"""Radio Program Pipeline - Segment Materializer.

Resolves every submitted segment to a local audio file inside the job's
work directory.

Input: ordered list of Segment (+ resolved roles), optional background URL
Output: list of MaterializedSegment with materialized[i].original_index == i

Per kind:
- single/recording: download source_url. A missing system asset (path
  contains /audio/other/ or -QID, or a non-recording role) is replaced by
  a silent placeholder; a missing recording is fatal.
- question_intro/pause/question_transition/silence: synthesize silence of
  duration_seconds (default 2s), no network call.
- combine_with_background: download every answer in order and concatenate
  them without background (mixing happens once, in the assembler).

Downloads run in a bounded thread pool; outputs are placed by index so
completion order never affects program order.

Error codes:
- RECORDING_MISSING: a recording could not be fetched
- SYNTHESIS_FAILED: silence/concat could not be produced
- DOWNLOAD_FAILED: background or other transport failure (only fatal for
  recordings)
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlsplit

import httpx

from radio.audio.ffmpeg import concat_files, make_silence
from radio.config import (
    DEFAULT_SILENCE_SECONDS,
    DOWNLOAD_ATTEMPTS,
    DOWNLOAD_RETRY_DELAY_SECONDS,
    DOWNLOAD_SCHEMES,
    DOWNLOAD_TIMEOUT_SECONDS,
    DOWNLOAD_WORKERS,
    PLACEHOLDER_BACKGROUND_SECONDS,
    PLACEHOLDER_DEFAULT_SECONDS,
    PLACEHOLDER_PROMPT_SECONDS,
)
from radio.errors import (
    DownloadError,
    EngineError,
    PipelineError,
    PipelineErrorCode,
    RecordingMissingError,
)
from radio.outcomes import StageOutcome
from radio.segments import (
    SILENCE_KINDS,
    MaterializedKind,
    MaterializedSegment,
    Role,
    Segment,
    SegmentKind,
)
from radio.utils.atomic_io import atomic_write_chunks

logger = logging.getLogger(__name__)

# --- Constants ---

# Naming conventions that mark authored (non-user) assets
SYSTEM_ASSET_MARKERS = ("/audio/other/", "-QID")
BACKGROUND_MARKER = "monkeys"

AUDIO_EXTENSIONS = (".mp3", ".webm", ".wav", ".ogg", ".m4a")
DEFAULT_EXTENSION = ".mp3"

# Timeout for synthesizing silence and concatenating answer groups
SYNTH_TIMEOUT_SECONDS = 30


# --- Result Types ---


@dataclass
class MaterializeMetrics:
    """Metrics collected while materializing a program."""

    segment_count: int = 0
    downloaded: int = 0
    synthesized: int = 0
    placeholders: int = 0
    placeholder_urls: list[str] = field(default_factory=list)
    elapsed_ms: int = 0


@dataclass
class MaterializedProgram:
    segments: list[MaterializedSegment]
    background_path: Path | None = None
    background_placeholder: bool = False


# --- Asset classification ---


def is_system_asset_url(url: str) -> bool:
    return any(marker in url for marker in SYSTEM_ASSET_MARKERS)


def placeholder_seconds(url: str) -> int:
    """Kind-appropriate length for a missing system asset."""
    if BACKGROUND_MARKER in url.lower():
        return PLACEHOLDER_BACKGROUND_SECONDS
    if "-QID" in url:
        return PLACEHOLDER_PROMPT_SECONDS
    return PLACEHOLDER_DEFAULT_SECONDS


def _extension_for(url: str) -> str:
    suffix = PurePosixPath(unquote(urlsplit(url).path)).suffix.lower()
    return suffix if suffix in AUDIO_EXTENSIONS else DEFAULT_EXTENSION


# --- Download ---


def download_file(client: httpx.Client, url: str, dest: Path) -> Path:
    """Fetch an http(s) url into dest (atomic), retrying transport errors and 5xx.

    Raises:
        DownloadError: With status_code set for HTTP error responses; also for
            any other URL scheme, which is never read.
    """
    if urlsplit(url).scheme not in DOWNLOAD_SCHEMES:
        raise DownloadError(url, "unsupported URL scheme")

    last_error: DownloadError | None = None
    for attempt in range(1, DOWNLOAD_ATTEMPTS + 1):
        try:
            with client.stream("GET", url, follow_redirects=True) as response:
                if response.status_code >= 400:
                    error = DownloadError(
                        url, f"HTTP {response.status_code}", status_code=response.status_code
                    )
                    if response.status_code < 500:
                        raise error
                    last_error = error
                else:
                    atomic_write_chunks(dest, response.iter_bytes())
                    return dest
        except httpx.HTTPError as e:
            last_error = DownloadError(url, str(e) or type(e).__name__)
        except OSError as e:
            raise DownloadError(url, f"write failed: {e}") from e

        if attempt < DOWNLOAD_ATTEMPTS:
            logger.warning(
                "Download attempt %d/%d failed for %s: %s",
                attempt,
                DOWNLOAD_ATTEMPTS,
                url,
                last_error.message,
            )
            time.sleep(DOWNLOAD_RETRY_DELAY_SECONDS * attempt)

    assert last_error is not None
    raise last_error


def _synthesize(path: Path, seconds: float) -> Path:
    try:
        return make_silence(path, seconds, timeout=SYNTH_TIMEOUT_SECONDS)
    except EngineError as e:
        raise PipelineError(
            PipelineErrorCode.SYNTHESIS_FAILED, f"Could not synthesize silence: {e.message}"
        ) from e


# --- Per-segment materialization ---


class _Materializer:
    def __init__(self, client: httpx.Client, work_dir: Path, metrics: MaterializeMetrics):
        self.client = client
        self.work_dir = work_dir
        self.metrics = metrics
        self._lock = threading.Lock()

    def _count(self, name: str, url: str | None = None) -> None:
        with self._lock:
            setattr(self.metrics, name, getattr(self.metrics, name) + 1)
            if url is not None:
                self.metrics.placeholder_urls.append(url)

    def system_asset(self, url: str, dest: Path) -> tuple[Path, bool]:
        """Download a system asset, falling back to a silent placeholder."""
        try:
            path = download_file(self.client, url, dest)
            self._count("downloaded")
            return path, False
        except DownloadError as e:
            seconds = placeholder_seconds(url)
            logger.warning(
                "System asset unavailable (%s); using %ds silent placeholder", e.message, seconds
            )
            placeholder = _synthesize(dest.with_suffix(".placeholder.mp3"), seconds)
            self._count("placeholders", url)
            return placeholder, True

    def recording(self, url: str, dest: Path) -> Path:
        try:
            path = download_file(self.client, url, dest)
        except DownloadError as e:
            raise RecordingMissingError(url, e.message) from e
        self._count("downloaded")
        return path

    def segment(self, index: int, segment: Segment, role: Role) -> MaterializedSegment:
        stem = f"{index:03d}-{segment.kind}"

        if segment.kind in SILENCE_KINDS:
            seconds = segment.duration_seconds or DEFAULT_SILENCE_SECONDS
            path = _synthesize(self.work_dir / f"{stem}.mp3", seconds)
            self._count("synthesized")
            return MaterializedSegment(
                local_path=path,
                kind=MaterializedKind.SINGLE,
                original_index=index,
                role=role,
                question_id=segment.question_id,
            )

        if segment.kind == SegmentKind.COMBINE_WITH_BACKGROUND:
            if not segment.answer_urls:
                raise RecordingMissingError(f"segment[{index}]", "answer group has no recordings")
            parts = [
                self.recording(url, self.work_dir / f"{stem}-{n:02d}{_extension_for(url)}")
                for n, url in enumerate(segment.answer_urls)
            ]
            if len(parts) == 1:
                path = parts[0]
            else:
                try:
                    path = concat_files(parts, self.work_dir / f"{stem}.mp3", SYNTH_TIMEOUT_SECONDS)
                except EngineError as e:
                    raise PipelineError(
                        PipelineErrorCode.SYNTHESIS_FAILED,
                        f"Could not concatenate answers for segment {index}: {e.message}",
                    ) from e
            return MaterializedSegment(
                local_path=path,
                kind=MaterializedKind.ANSWERS,
                original_index=index,
                role=role,
                question_id=segment.question_id,
                source_urls=segment.answer_urls,
            )

        url = segment.source_url
        if not url:
            raise PipelineError(
                PipelineErrorCode.DOWNLOAD_FAILED, f"segment[{index}] has no source_url"
            )
        dest = self.work_dir / f"{stem}{_extension_for(url)}"
        placeholder = False
        if role != Role.RECORDING or is_system_asset_url(url):
            path, placeholder = self.system_asset(url, dest)
        else:
            path = self.recording(url, dest)
        return MaterializedSegment(
            local_path=path,
            kind=MaterializedKind.SINGLE,
            original_index=index,
            role=role,
            question_id=segment.question_id,
            source_urls=(url,),
            placeholder=placeholder,
        )


def materialize_segments(
    segments: list[Segment],
    roles: list[Role],
    work_dir: Path,
    background_url: str | None = None,
    client: httpx.Client | None = None,
    max_workers: int = DOWNLOAD_WORKERS,
) -> StageOutcome[MaterializedProgram]:
    """Materialize all segments (and the background track) into work_dir.

    Returns:
        ok with a MaterializedProgram; degraded when placeholders were used;
        fatal when a recording is missing or synthesis failed.
    """
    if len(roles) != len(segments):
        raise ValueError("roles must align with segments")

    started = time.monotonic()
    work_dir.mkdir(parents=True, exist_ok=True)
    metrics = MaterializeMetrics(segment_count=len(segments))
    owns_client = client is None
    client = client or httpx.Client(timeout=DOWNLOAD_TIMEOUT_SECONDS)
    materializer = _Materializer(client, work_dir, metrics)

    try:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="materialize") as pool:
            futures = [
                pool.submit(materializer.segment, index, segment, role)
                for index, (segment, role) in enumerate(zip(segments, roles, strict=True))
            ]
            background_future = (
                pool.submit(
                    materializer.system_asset,
                    background_url,
                    work_dir / f"background{_extension_for(background_url)}",
                )
                if background_url
                else None
            )

            materialized: list[MaterializedSegment] = []
            for future in futures:
                try:
                    materialized.append(future.result())
                except PipelineError as e:
                    for pending in futures:
                        pending.cancel()
                    if background_future is not None:
                        background_future.cancel()
                    metrics.elapsed_ms = int((time.monotonic() - started) * 1000)
                    logger.error("Materialization failed: %s", e.message)
                    return StageOutcome.fatal(e.error_code, e.message, metrics=asdict(metrics))

            background_path = None
            background_placeholder = False
            if background_future is not None:
                try:
                    background_path, background_placeholder = background_future.result()
                except PipelineError as e:
                    logger.warning("Background unavailable, mixing disabled: %s", e.message)
    finally:
        if owns_client:
            client.close()

    metrics.elapsed_ms = int((time.monotonic() - started) * 1000)
    program = MaterializedProgram(
        segments=materialized,
        background_path=background_path,
        background_placeholder=background_placeholder,
    )
    logger.info(
        "Materialized %d segments (%d downloaded, %d synthesized, %d placeholders) in %dms",
        len(materialized),
        metrics.downloaded,
        metrics.synthesized,
        metrics.placeholders,
        metrics.elapsed_ms,
    )

    if metrics.placeholders:
        return StageOutcome.degraded(
            program,
            PipelineErrorCode.DOWNLOAD_FAILED,
            f"{metrics.placeholders} system asset(s) replaced by silence",
            metrics=asdict(metrics),
        )
    return StageOutcome.ok(program, metrics=asdict(metrics))


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 3:
        print(f"Usage: {sys.argv[0]} <url> <dest>")
        sys.exit(1)

    with httpx.Client(timeout=DOWNLOAD_TIMEOUT_SECONDS) as cli_client:
        try:
            saved = download_file(cli_client, sys.argv[1], Path(sys.argv[2]))
        except DownloadError as e:
            print(f"Error: {e.message}")
            sys.exit(1)
    print(f"Success: {saved} ({saved.stat().st_size} bytes)")

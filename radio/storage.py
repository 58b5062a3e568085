"""Radio Program Pipeline - Object storage.

PUT-overwrite object storage, no versioning. Two backends:

- LocalObjectStore: a directory tree, written with the atomic publish rule.
  Default; lets the whole pipeline run offline.
- HttpObjectStore: storage-zone HTTP API (AccessKey header, PUT to
  overwrite, GET on a directory path lists it as JSON), via httpx.

Object paths always start with "/" (see radio.utils.paths).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

import httpx

from radio.config import (
    CDN_URL,
    STORAGE_API_KEY,
    STORAGE_BACKEND,
    STORAGE_DIR,
    STORAGE_ENDPOINT,
    STORAGE_ZONE,
)
from radio.utils.atomic_io import atomic_copy_file, atomic_write_bytes

logger = logging.getLogger(__name__)

STORAGE_TIMEOUT_SECONDS = 60.0


class StorageError(Exception):
    """Object storage request failed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Storage operation on {path} failed: {reason}")


class ObjectStore(Protocol):
    def put_file(
        self,
        path: str,
        local_file: Path,
        content_type: str,
        headers: dict[str, str] | None = None,
    ) -> None: ...

    def put_bytes(
        self,
        path: str,
        data: bytes,
        content_type: str,
        headers: dict[str, str] | None = None,
    ) -> None: ...

    def get_bytes(self, path: str) -> bytes | None: ...

    def list(self, prefix: str) -> list[str]: ...

    def public_url(self, path: str) -> str: ...


def read_json(store: ObjectStore, path: str) -> dict | None:
    """Fetch and decode a JSON object; None if missing or not a JSON object."""
    raw = store.get_bytes(path)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Ignoring unparseable JSON object at %s", path)
        return None
    return data if isinstance(data, dict) else None


def write_json(store: ObjectStore, path: str, data: dict) -> None:
    store.put_bytes(
        path,
        json.dumps(data, indent=2, sort_keys=True).encode("utf-8"),
        "application/json",
        headers={"Cache-Control": "no-cache, no-store, must-revalidate, max-age=0"},
    )


class LocalObjectStore:
    """Filesystem-backed object store."""

    def __init__(self, root: str | Path, base_url: str = CDN_URL):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _local_path(self, path: str) -> Path:
        relative = path.lstrip("/")
        target = (self.root / relative).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise StorageError(path, "path escapes storage root")
        return target

    def put_file(
        self,
        path: str,
        local_file: Path,
        content_type: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        try:
            atomic_copy_file(local_file, self._local_path(path))
        except OSError as e:
            raise StorageError(path, str(e)) from e

    def put_bytes(
        self,
        path: str,
        data: bytes,
        content_type: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        try:
            atomic_write_bytes(self._local_path(path), data)
        except OSError as e:
            raise StorageError(path, str(e)) from e

    def get_bytes(self, path: str) -> bytes | None:
        target = self._local_path(path)
        if not target.is_file():
            return None
        return target.read_bytes()

    def list(self, prefix: str) -> list[str]:
        directory = self._local_path(prefix)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file())

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"


class HttpObjectStore:
    """Storage-zone HTTP API client."""

    def __init__(
        self,
        endpoint: str,
        zone: str,
        api_key: str,
        cdn_url: str,
        client: httpx.Client | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.zone = zone.strip("/")
        self.cdn_url = cdn_url.rstrip("/")
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=STORAGE_TIMEOUT_SECONDS)

    def _url(self, path: str) -> str:
        return f"{self.endpoint}/{self.zone}/{path.lstrip('/')}"

    def _put(self, path: str, content: bytes, content_type: str, headers: dict | None) -> None:
        request_headers = {"AccessKey": self._api_key, "Content-Type": content_type}
        request_headers.update(headers or {})
        try:
            response = self._client.put(self._url(path), content=content, headers=request_headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StorageError(path, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise StorageError(path, str(e)) from e
        logger.info("Uploaded %s (%d bytes)", path, len(content))

    def put_file(
        self,
        path: str,
        local_file: Path,
        content_type: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        try:
            content = Path(local_file).read_bytes()
        except OSError as e:
            raise StorageError(path, str(e)) from e
        self._put(path, content, content_type, headers)

    def put_bytes(
        self,
        path: str,
        data: bytes,
        content_type: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._put(path, data, content_type, headers)

    def get_bytes(self, path: str) -> bytes | None:
        try:
            response = self._client.get(self._url(path), headers={"AccessKey": self._api_key})
        except httpx.HTTPError as e:
            raise StorageError(path, str(e)) from e
        if response.status_code == 404:
            return None
        if response.is_error:
            raise StorageError(path, f"HTTP {response.status_code}")
        return response.content

    def list(self, prefix: str) -> list[str]:
        directory = prefix.rstrip("/") + "/"
        try:
            response = self._client.get(
                self._url(directory),
                headers={"AccessKey": self._api_key, "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise StorageError(prefix, str(e)) from e
        if response.status_code == 404:
            return []
        if response.is_error:
            raise StorageError(prefix, f"HTTP {response.status_code}")
        entries = response.json()
        return sorted(
            entry["ObjectName"]
            for entry in entries
            if isinstance(entry, dict) and not entry.get("IsDirectory") and entry.get("ObjectName")
        )

    def public_url(self, path: str) -> str:
        return f"{self.cdn_url}/{path.lstrip('/')}"


def get_object_store() -> ObjectStore:
    """Object store selected by RADIO_STORAGE_BACKEND."""
    if STORAGE_BACKEND == "http":
        if not STORAGE_ZONE or not STORAGE_API_KEY:
            raise RuntimeError(
                "RADIO_STORAGE_ZONE and RADIO_STORAGE_API_KEY are required for the http backend"
            )
        return HttpObjectStore(STORAGE_ENDPOINT, STORAGE_ZONE, STORAGE_API_KEY, CDN_URL)
    return LocalObjectStore(STORAGE_DIR, CDN_URL)

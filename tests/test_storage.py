"""Tests for object storage backends (radio/storage.py)."""

import json

import httpx
import pytest

from radio.storage import (
    HttpObjectStore,
    LocalObjectStore,
    StorageError,
    read_json,
    write_json,
)


class TestLocalObjectStore:
    def test_put_get_bytes(self, store):
        store.put_bytes("/en/lm42/w/a.json", b"{}", "application/json")
        assert store.get_bytes("/en/lm42/w/a.json") == b"{}"

    def test_missing_object(self, store):
        assert store.get_bytes("/nope.json") is None

    def test_put_file_overwrites(self, store, tmp_path):
        first = tmp_path / "one.mp3"
        first.write_bytes(b"one")
        second = tmp_path / "two.mp3"
        second.write_bytes(b"two")

        store.put_file("/en/p.mp3", first, "audio/mpeg")
        store.put_file("/en/p.mp3", second, "audio/mpeg")
        assert store.get_bytes("/en/p.mp3") == b"two"

    def test_put_missing_file_raises_storage_error(self, store, tmp_path):
        with pytest.raises(StorageError):
            store.put_file("/en/p.mp3", tmp_path / "missing.mp3", "audio/mpeg")

    def test_list_files_only(self, store):
        store.put_bytes("/en/lm42/w/b.webm", b"", "audio/webm")
        store.put_bytes("/en/lm42/w/a.webm", b"", "audio/webm")
        store.put_bytes("/en/lm42/w/sub/c.webm", b"", "audio/webm")
        assert store.list("/en/lm42/w") == ["a.webm", "b.webm"]
        assert store.list("/en/other") == []

    def test_path_escape_rejected(self, store):
        with pytest.raises(StorageError):
            store.put_bytes("/../outside.txt", b"x", "text/plain")

    def test_public_url(self, store):
        assert store.public_url("/en/p.mp3") == "https://cdn.test/en/p.mp3"


class TestJsonHelpers:
    def test_roundtrip(self, store):
        write_json(store, "/m.json", {"b": 1, "a": [1, 2]})
        assert read_json(store, "/m.json") == {"a": [1, 2], "b": 1}

    def test_garbage_reads_as_missing(self, store):
        store.put_bytes("/m.json", b"not json", "application/json")
        assert read_json(store, "/m.json") is None

    def test_non_object_reads_as_missing(self, store):
        store.put_bytes("/m.json", b"[1, 2]", "application/json")
        assert read_json(store, "/m.json") is None


def _http_store(handler) -> HttpObjectStore:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpObjectStore(
        "https://storage.test", "zone", "secret", "https://cdn.test", client=client
    )


class TestHttpObjectStore:
    def test_put_sends_access_key_and_headers(self, tmp_path):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(201)

        local = tmp_path / "p.mp3"
        local.write_bytes(b"mp3")
        _http_store(handler).put_file(
            "/en/p.mp3", local, "audio/mpeg", headers={"Cache-Control": "no-cache"}
        )

        assert seen["method"] == "PUT"
        assert seen["url"] == "https://storage.test/zone/en/p.mp3"
        assert seen["headers"]["AccessKey"] == "secret"
        assert seen["headers"]["Content-Type"] == "audio/mpeg"
        assert seen["headers"]["Cache-Control"] == "no-cache"
        assert seen["body"] == b"mp3"

    def test_put_error_raises(self):
        store = _http_store(lambda request: httpx.Response(500))
        with pytest.raises(StorageError) as exc_info:
            store.put_bytes("/x.json", b"{}", "application/json")
        assert "HTTP 500" in exc_info.value.reason

    def test_get_missing(self):
        store = _http_store(lambda request: httpx.Response(404))
        assert store.get_bytes("/x.json") is None

    def test_get_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(StorageError):
            _http_store(handler).get_bytes("/x.json")

    def test_list_parses_entries(self):
        entries = [
            {"ObjectName": "b.webm", "IsDirectory": False},
            {"ObjectName": "sub", "IsDirectory": True},
            {"ObjectName": "a.webm", "IsDirectory": False},
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == "https://storage.test/zone/en/lm42/w/"
            return httpx.Response(200, content=json.dumps(entries))

        assert _http_store(handler).list("/en/lm42/w") == ["a.webm", "b.webm"]

    def test_public_url(self):
        store = _http_store(lambda request: httpx.Response(200))
        assert store.public_url("/en/p.mp3") == "https://cdn.test/en/p.mp3"

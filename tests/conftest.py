"""Shared fixtures: an in-process object store and a fake JSON API server."""

import base64
import json
import re

import google_crc32c
import pytest
from pytest_httpserver import HTTPServer
from werkzeug import Request, Response

from fastrange.core.model import ObjectHandle
from fastrange.io.memory import MemoryTransport
from fastrange.storage import ObjectStorage


def pattern_bytes(size: int) -> bytes:
    """Deterministic, non-repeating-per-KiB payload so misplaced offsets show up."""
    return bytes((i * 31 + i // 251) % 256 for i in range(size))


class FakeGCSServer:
    """Subset of the object store JSON API served by pytest-httpserver.

    Handles object metadata, ``alt=media`` downloads with Range and media uploads.
    `fail_next` holds statuses returned by the next download requests,
    `honour_ranges=False` makes downloads ignore the Range header and
    `corrupt_offsets` flips those object offsets in every download body.
    """

    def __init__(self):
        self.objects = {}          # (bucket, name) -> list of (generation, data)
        self.generation = 1000
        self.range_headers = []
        self.fail_next = []
        self.honour_ranges = True
        self.corrupt_offsets = set()
        self.server = HTTPServer(host="127.0.0.1", port=0)
        self.server.expect_request(re.compile(r"^/storage/v1/b/[^/]+/o/.+$")).respond_with_handler(self._handle_object)
        self.server.expect_request(re.compile(r"^/upload/storage/v1/b/[^/]+/o$"),
                                   method="POST").respond_with_handler(self._handle_upload)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.server.port}"

    def start(self):
        self.server.start()

    def stop(self):
        self.server.stop()

    def put(self, bucket: str, name: str, data: bytes) -> int:
        self.generation += 1
        self.objects.setdefault((bucket, name), []).append((self.generation, data))
        return self.generation

    def _lookup(self, bucket, name, generation):
        versions = self.objects.get((bucket, name))
        if not versions:
            return None
        if generation is None:
            return versions[-1]
        for version in versions:
            if version[0] == int(generation):
                return version
        return None

    def _metadata(self, bucket, name, generation, data) -> Response:
        crc = base64.b64encode(google_crc32c.value(data).to_bytes(4, "big")).decode()
        payload = {"bucket": bucket, "name": name, "size": str(len(data)),
                   "generation": str(generation), "crc32c": crc}
        return Response(json.dumps(payload), status=200, content_type="application/json")

    def _handle_object(self, request: Request) -> Response:
        parts = request.path.split("/")
        bucket, name = parts[4], "/".join(parts[6:])
        found = self._lookup(bucket, name, request.args.get("generation"))
        if found is None:
            return Response(json.dumps({"error": {"code": 404}}), status=404, content_type="application/json")
        generation, stored = found

        if request.args.get("alt") != "media":
            return self._metadata(bucket, name, generation, stored)
        data = self._on_wire(stored)

        range_header = request.headers.get("Range")
        self.range_headers.append(range_header)
        if self.fail_next:
            return Response(status=self.fail_next.pop(0))

        if range_header and self.honour_ranges:
            start, end = map(int, range_header.replace("bytes=", "").split("-"))
            body = data[start:end + 1]
            return Response(body, status=206, headers={
                "Content-Range": f"bytes {start}-{start + len(body) - 1}/{len(data)}",
            })
        return Response(data, status=200)

    def _on_wire(self, data: bytes) -> bytes:
        if not self.corrupt_offsets:
            return data
        corrupted = bytearray(data)
        for offset in self.corrupt_offsets:
            if offset < len(corrupted):
                corrupted[offset] ^= 0xFF
        return bytes(corrupted)

    def _handle_upload(self, request: Request) -> Response:
        bucket = request.path.split("/")[5]
        name = request.args["name"]
        data = request.get_data()
        generation = self.put(bucket, name, data)
        return self._metadata(bucket, name, generation, data)


@pytest.fixture
def gcs_server():
    server = FakeGCSServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def transport():
    """In-memory transport with small messages so reads span several chunks."""
    return MemoryTransport(chunk_size=256)


@pytest.fixture
def storage(transport):
    return ObjectStorage(transport)


@pytest.fixture
def make_object(storage):
    """Write `size` patterned bytes and return (handle, data)."""
    def _make(size: int, name: str = "obj"):
        handle = ObjectHandle("bucket", name)
        data = pattern_bytes(size)
        storage.create_object(handle, data)
        return handle, data
    return _make

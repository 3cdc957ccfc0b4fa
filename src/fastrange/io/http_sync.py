"""Synchronous HTTP transport using requests.

Speaks the object store's JSON metadata API and its media download/upload
endpoints. Range reads are streamed with ``stream=True``.
"""

import base64
import binascii
import threading
from typing import Optional, Sequence
from urllib.parse import quote

import requests

from ..core.errors import FetchFailedError, InvalidArgumentError, TransientTransportError
from ..core.model import ObjectHandle, ObjectInfo
from ..core.options import StorageOptions
from .base import Chunk, Interceptor, RequestTrace

# statuses worth another attempt
RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


def _decode_crc32c(value: Optional[str]) -> Optional[int]:
    """Return the big-endian integer behind a base64 crc32c field."""
    if not value:
        return None
    try:
        return int.from_bytes(base64.b64decode(value), "big")
    except (binascii.Error, ValueError):
        return None


def _status_error(response: requests.Response, what: str) -> IOError:
    message = f"{what} failed with status {response.status_code}"
    if response.status_code in RETRYABLE_STATUS:
        return TransientTransportError(message)
    return FetchFailedError(message)


class HTTPRangeStream:
    """Chunks of one streamed range response."""

    def __init__(self, response: requests.Response, handle: ObjectHandle, skip: int,
                 chunk_size: int, trace: RequestTrace, counter: "HTTPTransport"):
        self._response = response
        self._handle = handle
        self._skip = skip   # leading bytes to drop when the server ignored the Range header
        self._trace = trace
        self._counter = counter
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self._closed = threading.Event()

    def __iter__(self):
        return self

    def __next__(self) -> Chunk:
        while True:
            if self._closed.is_set():
                raise FetchFailedError("range stream closed")
            try:
                data = next(self._chunks)
            except StopIteration:
                self._trace.complete()
                self._response.close()
                raise
            except (requests.ConnectionError, requests.Timeout,
                    requests.exceptions.ChunkedEncodingError) as e:
                if self._closed.is_set():
                    raise FetchFailedError("range stream closed") from e
                raise TransientTransportError(f"Range stream for {self._handle} interrupted: {e}") from e
            except (requests.RequestException, AttributeError, ValueError) as e:
                # closing the response under a blocked reader surfaces here
                if self._closed.is_set():
                    raise FetchFailedError("range stream closed") from e
                raise FetchFailedError(f"Range stream for {self._handle} failed: {e}") from e

            self._trace.inbound(len(data))
            self._counter._account(len(data))
            if self._skip:
                dropped = min(self._skip, len(data))
                self._skip -= dropped
                data = data[dropped:]
            if data:
                return Chunk(data)

    def close(self) -> None:
        self._closed.set()
        self._response.close()


class HTTPTransport:
    """Object store transport over HTTP with Range support."""

    def __init__(self, endpoint: str, *, options: Optional[StorageOptions] = None,
                 session: Optional[requests.Session] = None,
                 interceptors: Sequence[Interceptor] = ()):
        self.endpoint = endpoint.rstrip("/")
        self.options = options or StorageOptions(endpoint=endpoint)
        self.interceptors = list(interceptors)
        self.requests_made = 0
        self.bytes_fetched = 0
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._lock = threading.Lock()

    def _object_url(self, handle: ObjectHandle) -> str:
        return f"{self.endpoint}/storage/v1/b/{quote(handle.bucket, safe='')}/o/{quote(handle.name, safe='')}"

    def _account(self, nbytes: int) -> None:
        with self._lock:
            self.bytes_fetched += nbytes

    def _count_request(self) -> None:
        with self._lock:
            self.requests_made += 1

    def _info_from_json(self, handle: ObjectHandle, payload: dict) -> ObjectInfo:
        try:
            size = int(payload.get("size", 0))
            generation = int(payload["generation"]) if payload.get("generation") else None
        except (TypeError, ValueError) as e:
            raise FetchFailedError(f"Malformed metadata for {handle}: {e}") from e
        return ObjectInfo(handle=handle, exists=True, size=size, generation=generation,
                          crc32c=_decode_crc32c(payload.get("crc32c")))

    def stat(self, handle: ObjectHandle) -> ObjectInfo:
        params = {}
        if handle.generation is not None:
            params["generation"] = str(handle.generation)

        trace = RequestTrace(self.interceptors, "metadata", handle)
        trace.outbound()
        self._count_request()
        try:
            response = self._session.get(self._object_url(handle), params=params,
                                         timeout=self.options.timeout_s)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientTransportError(f"Metadata request for {handle} failed: {e}") from e
        except requests.RequestException as e:
            raise FetchFailedError(f"Metadata request for {handle} failed: {e}") from e

        trace.inbound(len(response.content))
        trace.complete()
        if response.status_code == 404:
            return ObjectInfo.missing(handle)
        if response.status_code >= 400:
            raise _status_error(response, f"Metadata request for {handle}")
        return self._info_from_json(handle, response.json())

    def open_range(self, handle: ObjectHandle, start: int, end: int) -> HTTPRangeStream:
        if start < 0 or end <= start:
            raise InvalidArgumentError(f"Invalid range [{start}, {end}) for {handle}")

        params = {"alt": "media"}
        if handle.generation is not None:
            params["generation"] = str(handle.generation)
        headers = {"Range": f"bytes={start}-{end - 1}"}

        trace = RequestTrace(self.interceptors, "read", handle)
        trace.outbound()
        self._count_request()
        try:
            response = self._session.get(self._object_url(handle), params=params, headers=headers,
                                         stream=True, timeout=self.options.timeout_s)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientTransportError(f"Range request for {handle} failed: {e}") from e
        except requests.RequestException as e:
            raise FetchFailedError(f"Range request for {handle} failed: {e}") from e

        if response.status_code == 206:
            return HTTPRangeStream(response, handle, 0, self.options.chunk_size, trace, self)

        if response.status_code == 200:
            # Range ignored; the body is the whole object. The fetcher trims the tail.
            return HTTPRangeStream(response, handle, start, self.options.chunk_size, trace, self)

        response.close()
        if response.status_code == 404:
            raise FetchFailedError(f"Item not found: {handle}")
        raise _status_error(response, f"Range request for {handle}")

    def write_object(self, handle: ObjectHandle, data: bytes) -> ObjectInfo:
        url = f"{self.endpoint}/upload/storage/v1/b/{quote(handle.bucket, safe='')}/o"
        params = {"uploadType": "media", "name": handle.name}

        trace = RequestTrace(self.interceptors, "write", handle)
        trace.outbound(len(data))
        self._count_request()
        try:
            response = self._session.post(url, params=params, data=bytes(data),
                                          headers={"Content-Type": "application/octet-stream"},
                                          timeout=self.options.timeout_s)
        except requests.RequestException as e:
            raise FetchFailedError(f"Upload of {handle} failed: {e}") from e

        trace.inbound(len(response.content))
        trace.complete()
        if response.status_code >= 400:
            raise FetchFailedError(f"Upload of {handle} failed with status {response.status_code}")
        return self._info_from_json(handle.with_generation(None), response.json())

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_http_transport(endpoint: str, **kwargs) -> HTTPTransport:
    """Create a synchronous HTTP transport."""
    return HTTPTransport(endpoint, **kwargs)

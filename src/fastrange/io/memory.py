"""In-process object store transport.

Keeps every generation of every object in memory and streams ranges the way
the remote store does: fixed-size messages, each carrying its own CRC32C.
Faults, wire corruption and latency can be injected for testing.
"""

from __future__ import annotations
import itertools
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

import google_crc32c

from ..core.errors import FetchFailedError, InvalidArgumentError, TransientTransportError
from ..core.model import ObjectHandle, ObjectInfo
from .base import Chunk, DEFAULT_CHUNK_SIZE, Interceptor, RequestTrace


@dataclass(frozen=True, slots=True)
class _StoredObject:
    data: bytes
    generation: int
    crc32c: int


@dataclass(slots=True)
class _Fault:
    after_chunks: int
    permanent: bool = False


class MemoryRangeStream:
    """Range stream over bytes already held in memory."""

    def __init__(self, transport: "MemoryTransport", key: Tuple[str, str], data: bytes,
                 start: int, end: int, fault: Optional[_Fault], trace: RequestTrace):
        self._transport = transport
        self._key = key
        self._data = data
        self._offset = start
        self._end = end
        self._fault = fault
        self._trace = trace
        self._chunks_sent = 0
        self._closed = threading.Event()

    def __iter__(self):
        return self

    def __next__(self) -> Chunk:
        if self._closed.is_set():
            raise FetchFailedError("range stream closed")

        if self._fault is not None and self._chunks_sent >= self._fault.after_chunks:
            self._fault = None
            raise TransientTransportError("injected transient failure: connection reset")

        if self._offset >= self._end:
            self._trace.complete()
            raise StopIteration

        latency = self._transport.latency_s
        if latency and self._closed.wait(latency):
            raise FetchFailedError("range stream closed")

        size = min(self._transport.chunk_size, self._end - self._offset)
        payload = self._data[self._offset:self._offset + size]
        crc = google_crc32c.value(payload)
        payload = self._transport._corrupt_on_wire(self._key, self._offset, payload)

        self._offset += size
        self._chunks_sent += 1
        self._transport._account(len(payload))
        self._trace.inbound(len(payload))
        return Chunk(payload, crc)

    def close(self) -> None:
        self._closed.set()


class MemoryTransport:
    """Transport backed by a process-local dictionary."""

    def __init__(self, *, chunk_size: int = DEFAULT_CHUNK_SIZE, latency_s: float = 0.0,
                 interceptors: Sequence[Interceptor] = ()):
        if chunk_size <= 0:
            raise InvalidArgumentError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.latency_s = latency_s
        self.interceptors: List[Interceptor] = list(interceptors)
        self.requests_made = 0
        self.bytes_fetched = 0
        self.range_requests: List[Tuple[int, int]] = []
        self._objects: Dict[Tuple[str, str], List[_StoredObject]] = {}
        self._generations = itertools.count(1)
        self._faults: List[_Fault] = []
        self._corrupt: Dict[Tuple[str, str], Set[int]] = {}
        self._lock = threading.Lock()

    # --- fault injection ---

    def inject_transient_failures(self, count: int, *, after_chunks: int = 0) -> None:
        """Make the next `count` range streams fail transiently after `after_chunks` chunks."""
        with self._lock:
            self._faults.extend(_Fault(after_chunks) for _ in range(count))

    def inject_permanent_failure(self) -> None:
        """Make the next range request fail permanently."""
        with self._lock:
            self._faults.append(_Fault(0, permanent=True))

    def corrupt_byte(self, handle: ObjectHandle, offset: int) -> None:
        """Flip one byte on the wire the next time `offset` is streamed."""
        with self._lock:
            self._corrupt.setdefault((handle.bucket, handle.name), set()).add(offset)

    def _corrupt_on_wire(self, key: Tuple[str, str], start: int, payload: bytes) -> bytes:
        with self._lock:
            offsets = self._corrupt.get(key)
            if not offsets:
                return payload
            hits = sorted(o for o in offsets if start <= o < start + len(payload))
            if not hits:
                return payload
            offsets.difference_update(hits)
        buf = bytearray(payload)
        for offset in hits:
            buf[offset - start] ^= 0xFF
        return bytes(buf)

    def _account(self, nbytes: int) -> None:
        with self._lock:
            self.bytes_fetched += nbytes

    # --- ObjectTransport ---

    def _lookup(self, handle: ObjectHandle) -> Optional[_StoredObject]:
        versions = self._objects.get((handle.bucket, handle.name))
        if not versions:
            return None
        if handle.generation is None:
            return versions[-1]
        for stored in versions:
            if stored.generation == handle.generation:
                return stored
        return None

    def stat(self, handle: ObjectHandle) -> ObjectInfo:
        trace = RequestTrace(self.interceptors, "metadata", handle)
        trace.outbound()
        with self._lock:
            self.requests_made += 1
            stored = self._lookup(handle)
        trace.inbound(0)
        trace.complete()
        if stored is None:
            return ObjectInfo.missing(handle)
        return ObjectInfo(handle=handle, exists=True, size=len(stored.data),
                          generation=stored.generation, crc32c=stored.crc32c)

    def open_range(self, handle: ObjectHandle, start: int, end: int) -> MemoryRangeStream:
        if start < 0 or end < start:
            raise InvalidArgumentError(f"Invalid range [{start}, {end}) for {handle}")

        trace = RequestTrace(self.interceptors, "read", handle)
        with self._lock:
            self.requests_made += 1
            self.range_requests.append((start, end))
            fault = self._faults.pop(0) if self._faults else None
            stored = self._lookup(handle)

        trace.outbound()
        if fault is not None and fault.permanent:
            raise FetchFailedError(f"injected permanent failure reading {handle}")
        if stored is None:
            raise FetchFailedError(f"Item not found: {handle}")
        if end > len(stored.data):
            raise FetchFailedError(f"Range [{start}, {end}) exceeds size {len(stored.data)} of {handle}")

        return MemoryRangeStream(self, (handle.bucket, handle.name), stored.data, start, end, fault, trace)

    def write_object(self, handle: ObjectHandle, data: bytes) -> ObjectInfo:
        data = bytes(data)
        trace = RequestTrace(self.interceptors, "write", handle)
        trace.outbound(len(data))
        with self._lock:
            self.requests_made += 1
            stored = _StoredObject(data, next(self._generations), google_crc32c.value(data))
            self._objects.setdefault((handle.bucket, handle.name), []).append(stored)
        trace.inbound(0)
        trace.complete()
        return ObjectInfo(handle=handle.with_generation(None), exists=True, size=len(data),
                          generation=stored.generation, crc32c=stored.crc32c)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

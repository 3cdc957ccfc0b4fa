"""Tests for the in-memory transport."""

import threading
import time

import google_crc32c
import pytest

from fastrange.core.errors import FetchFailedError, InvalidArgumentError, TransientTransportError
from fastrange.core.model import ObjectHandle
from fastrange.io.base import MessageDirection, ObjectTransport, RangeStream
from fastrange.io.memory import MemoryTransport


class TestMemoryTransport:
    """Test object storage, generations and range streams."""

    def setup_method(self):
        self.transport = MemoryTransport(chunk_size=100)
        self.handle = ObjectHandle("bucket", "data.bin")
        self.data = bytes(range(256)) * 2   # 512 bytes

    def test_implements_protocols(self):
        assert isinstance(self.transport, ObjectTransport)
        self.transport.write_object(self.handle, self.data)
        assert isinstance(self.transport.open_range(self.handle, 0, 10), RangeStream)

    def test_stat_missing(self):
        info = self.transport.stat(self.handle)
        assert not info.exists
        assert info.size == 0

    def test_write_and_stat(self):
        written = self.transport.write_object(self.handle, self.data)
        info = self.transport.stat(self.handle)
        assert info.exists
        assert info.size == 512
        assert info.generation == written.generation
        assert info.crc32c == google_crc32c.value(self.data)

    def test_generations_are_kept(self):
        first = self.transport.write_object(self.handle, b"one")
        second = self.transport.write_object(self.handle, b"two!")
        assert second.generation > first.generation

        assert self.transport.stat(self.handle).size == 4
        old = self.transport.stat(self.handle.with_generation(first.generation))
        assert old.size == 3
        assert not self.transport.stat(self.handle.with_generation(999)).exists

    def test_range_stream_chunks(self):
        self.transport.write_object(self.handle, self.data)
        chunks = list(self.transport.open_range(self.handle, 10, 360))

        assert [len(c.data) for c in chunks] == [100, 100, 100, 50]
        assert b"".join(c.data for c in chunks) == self.data[10:360]
        assert all(c.crc32c == google_crc32c.value(c.data) for c in chunks)

    def test_counters(self):
        self.transport.write_object(self.handle, self.data)
        list(self.transport.open_range(self.handle, 0, 250))
        assert self.transport.requests_made == 2
        assert self.transport.bytes_fetched == 250
        assert self.transport.range_requests == [(0, 250)]

    def test_range_errors(self):
        with pytest.raises(FetchFailedError, match="Item not found"):
            self.transport.open_range(self.handle, 0, 10)
        self.transport.write_object(self.handle, self.data)
        with pytest.raises(FetchFailedError):
            self.transport.open_range(self.handle, 0, 1000)
        with pytest.raises(InvalidArgumentError):
            self.transport.open_range(self.handle, 10, 5)

    def test_transient_fault_after_chunks(self):
        self.transport.write_object(self.handle, self.data)
        self.transport.inject_transient_failures(1, after_chunks=2)

        stream = self.transport.open_range(self.handle, 0, 512)
        next(stream)
        next(stream)
        with pytest.raises(TransientTransportError):
            next(stream)

        # the fault was consumed by the first stream
        assert len(list(self.transport.open_range(self.handle, 0, 512))) == 6

    def test_permanent_fault(self):
        self.transport.write_object(self.handle, self.data)
        self.transport.inject_permanent_failure()
        with pytest.raises(FetchFailedError):
            self.transport.open_range(self.handle, 0, 10)
        assert next(self.transport.open_range(self.handle, 0, 10)).data == self.data[:10]

    def test_corruption_is_one_shot(self):
        self.transport.write_object(self.handle, self.data)
        self.transport.corrupt_byte(self.handle, 150)

        chunk = list(self.transport.open_range(self.handle, 100, 200))[0]
        assert chunk.data[50] == self.data[150] ^ 0xFF
        assert chunk.crc32c != google_crc32c.value(chunk.data)

        chunk = list(self.transport.open_range(self.handle, 100, 200))[0]
        assert chunk.data == self.data[100:200]

    def test_close_interrupts_latency(self):
        transport = MemoryTransport(chunk_size=100, latency_s=5.0)
        transport.write_object(self.handle, self.data)
        stream = transport.open_range(self.handle, 0, 512)

        timer = threading.Timer(0.1, stream.close)
        started = time.monotonic()
        timer.start()
        with pytest.raises(FetchFailedError, match="closed"):
            next(stream)
        assert time.monotonic() - started < 2.0

    def test_interceptors_see_each_message(self):
        events = []
        transport = MemoryTransport(chunk_size=100, interceptors=[events.append])
        transport.write_object(self.handle, self.data)
        events.clear()

        list(transport.open_range(self.handle, 0, 250))
        assert [e.direction for e in events] == [
            MessageDirection.OUTBOUND,
            MessageDirection.INBOUND,
            MessageDirection.INBOUND,
            MessageDirection.INBOUND,
            MessageDirection.COMPLETE,
        ]
        assert [e.wire_size for e in events[1:4]] == [100, 100, 50]
        assert all(e.request_kind == "read" and e.object_name == "data.bin" for e in events)

    def test_rejects_bad_chunk_size(self):
        with pytest.raises(InvalidArgumentError):
            MemoryTransport(chunk_size=0)

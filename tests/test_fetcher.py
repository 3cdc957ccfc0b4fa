"""Tests for single range fetches over the in-memory transport."""

import google_crc32c
import pytest

from fastrange.channel.fetcher import FetchState, RangeFetch
from fastrange.core.errors import ChecksumMismatchError, FetchFailedError, TruncatedReadError
from fastrange.core.options import ReadOptions
from fastrange.io.base import Chunk

FAST_RETRY = ReadOptions(retry_backoff_s=0, retry_backoff_max_s=0)


class ListStream:
    """Range stream over a fixed list of chunks."""

    def __init__(self, chunks):
        self._chunks = iter(chunks)
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._chunks)

    def close(self):
        self.closed = True


class ShortTransport:
    requests_made = 0
    bytes_fetched = 0

    def __init__(self):
        self.streams = []

    def open_range(self, handle, start, end):
        stream = ListStream([Chunk(b"x" * ((end - start) // 2))])
        self.streams.append(stream)
        return stream


class UncheckedTransport:
    """Serves whole ranges in chunks that carry no checksum."""

    requests_made = 0
    bytes_fetched = 0

    def __init__(self, data, chunk_size=100):
        self.data = data
        self.chunk_size = chunk_size

    def open_range(self, handle, start, end):
        return ListStream([Chunk(self.data[i:min(i + self.chunk_size, end)])
                           for i in range(start, end, self.chunk_size)])


class TestRangeFetch:
    """Test chunk delivery, retries and failure states."""

    def test_streams_exact_range(self, transport, make_object):
        handle, data = make_object(2000)
        fetch = RangeFetch(transport, handle, 100, 1100, FAST_RETRY)

        chunks = list(fetch)
        assert b"".join(chunks) == data[100:1100]
        assert all(chunks)
        assert fetch.state is FetchState.COMPLETE
        assert fetch.delivered == 1000
        assert fetch.attempts == 1

    def test_stays_exhausted(self, transport, make_object):
        handle, _ = make_object(300)
        fetch = RangeFetch(transport, handle, 0, 300, FAST_RETRY)
        fetch.read_all()
        assert next(fetch, None) is None

    def test_empty_range_completes_without_request(self, transport, make_object):
        handle, _ = make_object(300)
        requests_before = transport.requests_made
        fetch = RangeFetch(transport, handle, 300, 300, FAST_RETRY)
        assert fetch.read_all() == b""
        assert fetch.done
        assert transport.requests_made == requests_before

    def test_transient_failure_resumes_from_offset(self, transport, make_object):
        handle, data = make_object(1024)
        transport.inject_transient_failures(1, after_chunks=2)

        fetch = RangeFetch(transport, handle, 0, 1024, FAST_RETRY)
        assert fetch.read_all() == data
        assert fetch.attempts == 2
        assert transport.range_requests == [(0, 1024), (512, 1024)]

    def test_retries_exhausted(self, transport, make_object):
        handle, _ = make_object(1024)
        transport.inject_transient_failures(3)

        fetch = RangeFetch(transport, handle, 0, 1024, FAST_RETRY)
        with pytest.raises(FetchFailedError, match="after 3 attempts"):
            fetch.read_all()
        assert fetch.state is FetchState.FAILED

    def test_permanent_failure_not_retried(self, transport, make_object):
        handle, _ = make_object(1024)
        transport.inject_permanent_failure()

        fetch = RangeFetch(transport, handle, 0, 1024, FAST_RETRY)
        with pytest.raises(FetchFailedError):
            next(fetch)
        assert fetch.attempts == 1
        with pytest.raises(FetchFailedError, match="already failed"):
            next(fetch)

    def test_checksum_mismatch_stops_stream(self, transport, make_object):
        handle, data = make_object(1024)
        transport.corrupt_byte(handle, 300)
        fetch = RangeFetch(transport, handle, 0, 1024, ReadOptions(checksums_enabled=True))

        assert next(fetch) == data[:256]
        with pytest.raises(ChecksumMismatchError) as excinfo:
            next(fetch)
        assert excinfo.value.expected != excinfo.value.actual
        assert fetch.state is FetchState.FAILED

    def test_checksums_disabled_passes_corruption(self, transport, make_object):
        handle, data = make_object(512)
        transport.corrupt_byte(handle, 10)
        fetch = RangeFetch(transport, handle, 0, 512, ReadOptions(checksums_enabled=False))
        received = fetch.read_all()
        assert received[10] == data[10] ^ 0xFF

    def test_attempt_cap_spans_chunks(self, transport, make_object):
        handle, _ = make_object(16384)
        transport.inject_transient_failures(20, after_chunks=1)
        options = ReadOptions(max_fetch_attempts=3, retry_backoff_s=0, retry_backoff_max_s=0)

        fetch = RangeFetch(transport, handle, 0, 16384, options)
        with pytest.raises(FetchFailedError, match="after 3 attempts"):
            fetch.read_all()
        assert fetch.attempts == 3
        assert len(transport.range_requests) == 3

    def test_deadline_spans_retries(self, transport, make_object):
        handle, _ = make_object(1024)
        transport.inject_transient_failures(10)
        options = ReadOptions(max_fetch_attempts=10, fetch_deadline_s=0.05, retry_backoff_s=0.1)

        fetch = RangeFetch(transport, handle, 0, 1024, options)
        with pytest.raises(FetchFailedError):
            fetch.read_all()
        # the first backoff sleep already outlasts the deadline
        assert fetch.attempts == 2
        assert fetch.state is FetchState.FAILED

    def test_whole_object_checksum(self, transport, make_object):
        handle, data = make_object(1024)
        options = ReadOptions(checksums_enabled=True)

        fetch = RangeFetch(transport, handle, 0, 1024, options, expected_crc32c=google_crc32c.value(data))
        assert fetch.read_all() == data

        wrong = RangeFetch(transport, handle, 0, 1024, options, expected_crc32c=google_crc32c.value(data) ^ 1)
        assert b"".join(next(wrong) for _ in range(3)) == data[:768]
        with pytest.raises(ChecksumMismatchError) as excinfo:
            next(wrong)
        assert excinfo.value.expected == google_crc32c.value(data) ^ 1
        assert excinfo.value.actual == google_crc32c.value(data)
        assert wrong.state is FetchState.FAILED

    def test_whole_object_checksum_ignored_when_disabled(self, transport, make_object):
        handle, data = make_object(1024)
        fetch = RangeFetch(transport, handle, 0, 1024, ReadOptions(checksums_enabled=False), expected_crc32c=0)
        assert fetch.read_all() == data

    def test_unverified_chunks_reported_once(self):
        data = bytes(range(250)) * 2
        reported = []
        fetch = RangeFetch(UncheckedTransport(data), None, 0, 500, ReadOptions(checksums_enabled=True),
                           on_unverified=reported.append)

        assert fetch.read_all() == data
        assert reported == [fetch]

    def test_unchecked_chunks_verified_against_object(self):
        data = bytes(range(250)) * 2
        reported = []
        fetch = RangeFetch(UncheckedTransport(data), None, 0, 500, ReadOptions(checksums_enabled=True),
                           expected_crc32c=google_crc32c.value(data[:499] + b"\x00"),
                           on_unverified=reported.append)

        with pytest.raises(ChecksumMismatchError):
            fetch.read_all()
        assert reported == []

    def test_short_stream_is_truncation(self):
        transport = ShortTransport()
        fetch = RangeFetch(transport, None, 0, 100, FAST_RETRY)
        assert next(fetch) == b"x" * 50
        with pytest.raises(TruncatedReadError):
            next(fetch)
        assert transport.streams[0].closed

    def test_close_cancels(self, transport, make_object):
        handle, _ = make_object(1024)
        fetch = RangeFetch(transport, handle, 0, 1024, FAST_RETRY)
        next(fetch)
        fetch.close()
        with pytest.raises(FetchFailedError, match="cancelled"):
            next(fetch)

    def test_rejects_inverted_range(self, transport, make_object):
        handle, _ = make_object(10)
        with pytest.raises(ValueError):
            RangeFetch(transport, handle, 5, 4, FAST_RETRY)

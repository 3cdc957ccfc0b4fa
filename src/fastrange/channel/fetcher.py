"""Single bounded range fetch over a streaming transport."""

from __future__ import annotations

import enum
import logging
import time
from typing import Callable, Optional

import google_crc32c
from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    wait_exponential,
)

from ..core.errors import ChecksumMismatchError, FetchFailedError, TransientTransportError, TruncatedReadError
from ..core.model import ObjectHandle
from ..core.options import ReadOptions
from ..io.base import Chunk, ObjectTransport, RangeStream

logger = logging.getLogger(__name__)


class FetchState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


class RangeFetch:
    """
    Lazy, finite, non-restartable sequence of the bytes in [start, end).

    Iteration yields non-empty ``bytes`` chunks in order. StopIteration is raised
    only once every requested byte was delivered; a stream that ends early raises
    TruncatedReadError instead. Transient transport failures are retried with
    exponential backoff by re-requesting the undelivered remainder, so retries are
    invisible to the caller unless they run out. The attempt cap and the deadline
    bound the whole fetch, not a single chunk.

    With checksums enabled every chunk that carries a CRC32C is validated before
    it is handed out. When `expected_crc32c` is given (the range is the whole
    object) the running CRC32C of all delivered bytes is compared with it before
    the final chunk is handed out. A chunk that can be verified neither way is
    reported once through `on_unverified`.

    State machine: IDLE -> STREAMING -> COMPLETE | FAILED. A finished fetch
    cannot be restarted; start a new RangeFetch instead.
    """

    def __init__(self, transport: ObjectTransport, handle: ObjectHandle, start: int, end: int,
                 options: ReadOptions, *, expected_crc32c: Optional[int] = None,
                 on_unverified: Optional[Callable[[RangeFetch], None]] = None):
        if start < 0 or end < start:
            raise ValueError(f"Invalid fetch range [{start}, {end})")
        self.transport = transport
        self.handle = handle
        self.start = start
        self.end = end
        self.options = options
        self.expected_crc32c = expected_crc32c
        self.state = FetchState.IDLE
        self.attempts = 0
        self._offset = start   # next undelivered byte
        self._stream: Optional[RangeStream] = None
        self._cancelled = False
        self._started: Optional[float] = None
        self._on_unverified = on_unverified
        self._unverified_reported = False
        self._running = None
        if options.checksums_enabled and expected_crc32c is not None:
            self._running = google_crc32c.Checksum()
        self._retrying = Retrying(
            stop=self._budget_spent,
            wait=wait_exponential(multiplier=options.retry_backoff_s, max=options.retry_backoff_max_s),
            retry=retry_if_exception(self._retryable),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )

    @property
    def delivered(self) -> int:
        return self._offset - self.start

    @property
    def done(self) -> bool:
        return self.state in (FetchState.COMPLETE, FetchState.FAILED)

    @property
    def elapsed_s(self) -> float:
        return 0.0 if self._started is None else time.monotonic() - self._started

    def __iter__(self):
        return self

    def __next__(self) -> bytes:
        if self.state is FetchState.COMPLETE:
            raise StopIteration
        if self.state is FetchState.FAILED:
            raise FetchFailedError(f"Fetch of {self.handle} [{self.start}, {self.end}) already failed")
        if self._cancelled:
            self._fail()
            raise FetchFailedError(f"Fetch of {self.handle} [{self.start}, {self.end}) was cancelled")

        if self._offset >= self.end:
            self._finish()
            raise StopIteration

        if self.state is FetchState.IDLE:
            logger.debug("fetch %s [%d, %d) started", self.handle, self.start, self.end)
            self.state = FetchState.STREAMING
            self._started = time.monotonic()

        try:
            data = self._pull()
            self._check_whole_object(data)
        except Exception:
            self._fail()
            raise

        self._offset += len(data)
        if self._offset >= self.end:
            self._finish()
        return data

    # --- internals ---

    def _pull(self) -> bytes:
        """Return the next non-empty, validated slice of the range."""
        try:
            for attempt in self._retrying:
                with attempt:
                    return self._pull_once()
        except TransientTransportError as e:
            raise FetchFailedError(
                f"Fetch of {self.handle} [{self._offset}, {self.end}) failed after {self.attempts} attempts "
                f"in {self.elapsed_s:.1f}s: {e}"
            ) from e

    def _budget_spent(self, retry_state: RetryCallState) -> bool:
        if self.attempts >= self.options.max_fetch_attempts:
            return True
        return self.elapsed_s >= self.options.fetch_deadline_s

    def _retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, TransientTransportError) and not self._cancelled

    def _pull_once(self) -> bytes:
        while True:
            if self._stream is None:
                self.attempts += 1
                self._stream = self.transport.open_range(self.handle, self._offset, self.end)
                if self._cancelled:
                    self._close_stream()
                    raise FetchFailedError(f"Fetch of {self.handle} was cancelled")
            try:
                chunk = next(self._stream)
            except StopIteration:
                self._close_stream()
                raise TruncatedReadError(
                    f"Stream for {self.handle} ended at offset {self._offset}, expected {self.end}"
                ) from None
            except TransientTransportError:
                self._close_stream()
                raise

            data = self._validate(chunk)
            if data:
                return data[: self.end - self._offset]

    def _validate(self, chunk: Chunk) -> bytes:
        if not self.options.checksums_enabled:
            return chunk.data
        if chunk.crc32c is not None:
            actual = google_crc32c.value(chunk.data)
            if actual != chunk.crc32c:
                raise ChecksumMismatchError(
                    f"Checksum mismatch for {self.handle} at offset {self._offset}: "
                    f"expected {chunk.crc32c:#010x}, got {actual:#010x}",
                    expected=chunk.crc32c,
                    actual=actual,
                )
        elif self._running is None and not self._unverified_reported:
            self._unverified_reported = True
            if self._on_unverified is not None:
                self._on_unverified(self)
            else:
                logger.warning("no checksum available for %s [%d, %d); bytes are not verified",
                               self.handle, self.start, self.end)
        return chunk.data

    def _check_whole_object(self, data: bytes) -> None:
        """Fold `data` into the running CRC32C; compare it before the final chunk leaves."""
        if self._running is None:
            return
        self._running.update(data)
        if self._offset + len(data) < self.end:
            return
        actual = int.from_bytes(self._running.digest(), "big")
        if actual != self.expected_crc32c:
            raise ChecksumMismatchError(
                f"Checksum mismatch for {self.handle}: object CRC32C is {self.expected_crc32c:#010x}, "
                f"received bytes hash to {actual:#010x}",
                expected=self.expected_crc32c,
                actual=actual,
            )

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def _finish(self) -> None:
        if self.state is not FetchState.COMPLETE:
            logger.debug("fetch %s [%d, %d) complete", self.handle, self.start, self.end)
        self.state = FetchState.COMPLETE
        self._close_stream()

    def _fail(self) -> None:
        self.state = FetchState.FAILED
        self._close_stream()

    def read_all(self) -> bytes:
        """Drain the remaining range into one bytes object."""
        return b"".join(self)

    def close(self) -> None:
        """Stop pulling. Safe to call from another thread while a pull is blocked."""
        self._cancelled = True
        self._close_stream()

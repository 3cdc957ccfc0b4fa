"""Seekable read channel over one remote object."""

from __future__ import annotations

import enum
import io
import logging
from typing import Optional

from ..core.errors import ClosedChannelError, InvalidArgumentError, TruncatedReadError
from ..core.model import ObjectInfo
from ..core.options import ReadOptions
from ..core.strategy import Action, ReadContext, decide, initial_pattern
from ..io.base import ObjectTransport
from .fetcher import RangeFetch
from .footer import FooterCache, FooterEntry

logger = logging.getLogger(__name__)


class SourceKind(enum.Enum):
    LIVE_FETCH = "live_fetch"
    FOOTER_CACHE = "footer_cache"


class BufferedRange:
    """The bytes a channel currently holds, plus the stream that produced them.

    `start`/`end` bound the bytes held in memory, `cursor` is the next byte the
    channel hands out and `limit` is as far as the backing fetch can ever reach.
    """

    def __init__(self, source: SourceKind, start: int, data: bytes, limit: int,
                 fetch: Optional[RangeFetch] = None):
        self.source = source
        self.start = start
        self.data = data
        self.cursor = start
        self._limit = limit
        self.fetch = fetch

    @classmethod
    def from_footer(cls, entry: FooterEntry) -> BufferedRange:
        return cls(SourceKind.FOOTER_CACHE, entry.start, entry.data, entry.end)

    @property
    def end(self) -> int:
        return self.start + len(self.data)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def live(self) -> bool:
        return self.fetch is not None and not self.fetch.done

    def _pull(self) -> bool:
        """Replace the held bytes with the next chunk of the live stream."""
        if self.fetch is None:
            return False
        chunk = next(self.fetch, None)
        if chunk is None:
            return False
        self.start, self.data = self.end, chunk
        return True

    def skip_to(self, position: int) -> int:
        """Consume the stream up to `position` without reopening it; return bytes discarded."""
        discarded = position - self.cursor
        while position >= self.end:
            if not self._pull():
                raise TruncatedReadError(f"Stream ended at {self.end} before reaching position {position}")
        self.cursor = position
        return discarded

    def copy_into(self, view: memoryview, position: int) -> int:
        offset = position - self.start
        n = min(len(view), len(self.data) - offset)
        view[:n] = self.data[offset:offset + n]
        self.cursor = position + n
        return n

    def release(self) -> None:
        if self.fetch is not None:
            self.fetch.close()


class ReadChannel(io.RawIOBase):
    """
    Seekable, read-only stream over a remote object.

    Every read asks the seek strategy how to reach the current position: reuse
    the bytes already held, skip forward on the live stream, serve from the
    footer cache, or release the stream and start a new range fetch. Only one
    fetch stream is open at a time.

    A channel is not safe for concurrent readers. close() may be called from
    another thread; a read blocked on the network then fails with
    ClosedChannelError.
    """

    def __init__(self, transport: ObjectTransport, info: ObjectInfo, options: Optional[ReadOptions] = None):
        super().__init__()
        self._buffered: Optional[BufferedRange] = None
        self._inflight: Optional[RangeFetch] = None
        self._footer: Optional[FooterCache] = None
        if not info.exists:
            super().close()
            raise InvalidArgumentError(f"Cannot open a channel on missing object {info.handle}")
        self.options = options or ReadOptions()
        self.info = info
        self.handle = info.handle.with_generation(info.generation)   # pin what was resolved at open
        self.fetch_count = 0
        self._unverified_reported = False
        self._transport = transport
        self._size = info.size
        self._position = 0
        self._last_read_end: Optional[int] = None
        self._pattern = initial_pattern(self.options.access_pattern)
        self._footer = FooterCache(self.options.footer_zone_size, self._size, self._fetch_footer)
        logger.debug("opened channel on %s (size=%d, generation=%s)", self.handle, self._size, info.generation)

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"position={self._position}"
        return f"<ReadChannel {self.handle} size={self._size} {state}>"

    # --- lifecycle ---

    def _check_open(self) -> None:
        if self.closed:
            raise ClosedChannelError(f"Channel for {self.handle} is closed")

    def close(self) -> None:
        """Release the fetch stream and the footer cache. Idempotent."""
        if self.closed:
            return
        super().close()
        inflight = self._inflight
        if inflight is not None:
            inflight.close()
        self._discard_buffer()
        if self._footer is not None:
            self._footer.clear()
        logger.debug("closed channel on %s at position %d", self.handle, self._position)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    # --- position ---

    @property
    def size(self) -> int:
        return self._size

    @property
    def position(self) -> int:
        self._check_open()
        return self._position

    def tell(self) -> int:
        return self.position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move the position; the buffer is only re-evaluated on the next read."""
        self._check_open()
        if whence == io.SEEK_SET:
            target = offset
        elif whence == io.SEEK_CUR:
            target = self._position + offset
        elif whence == io.SEEK_END:
            target = self._size + offset
        else:
            raise InvalidArgumentError(f"Invalid whence: {whence}")

        if target < 0 or target > self._size:
            raise InvalidArgumentError(
                f"Invalid seek offset: position value ({target}) must be between 0 and {self._size} for {self.handle}"
            )
        self._position = target
        return target

    # --- reading ---

    def readinto(self, buffer) -> int:
        """Fill `buffer` from the current position; return 0 only at end of object.

        Bytes are staged privately and copied into `buffer` only when the call
        succeeds, so a failed read leaves `buffer` untouched.
        """
        self._check_open()
        view = memoryview(buffer).cast("B")
        if not len(view) or self._position >= self._size:
            return 0
        staged = bytearray(min(len(view), self._size - self._position))
        n = self._fill(memoryview(staged))
        view[:n] = staged[:n]
        return n

    def readall(self) -> bytes:
        self._check_open()
        if self._position >= self._size:
            return b""
        buf = bytearray(self._size - self._position)
        n = self._fill(memoryview(buf))
        return bytes(buf[:n])

    def _fill(self, view: memoryview) -> int:
        start_position = self._position
        self._pattern = self._pattern.observe(start_position == self._last_read_end)
        copied = 0
        try:
            while copied < len(view) and self._position < self._size:
                self._check_open()
                self._prepare(len(view) - copied)
                n = self._buffered.copy_into(view[copied:], self._position)
                copied += n
                self._position += n
        except Exception as e:
            # a call either returns a count or fails; the next read starts a fresh fetch
            self._discard_buffer()
            self._position = start_position
            if self.closed:
                raise ClosedChannelError(f"Channel for {self.handle} was closed during read") from e
            raise

        self._last_read_end = self._position
        return copied

    def _prepare(self, requested: int) -> None:
        """Leave a buffered range holding the byte at the current position."""
        ctx = ReadContext(
            position=self._position,
            requested=requested,
            object_size=self._size,
            options=self.options,
            pattern=self._pattern,
            buffered=self._buffered,
            footer_cached=self._footer.entry is not None,
        )
        decision = decide(ctx)

        if decision.action is Action.REUSE:
            self._buffered.cursor = self._position
        elif decision.action is Action.SERVE_FOOTER:
            self._discard_buffer()
            self._buffered = BufferedRange.from_footer(self._footer.maybe_serve(self._position))
            self._buffered.cursor = self._position
        elif decision.action is Action.SKIP_IN_PLACE:
            discarded = self._buffered.skip_to(self._position)
            logger.debug("skipped %d bytes in place to %d", discarded, self._position)
        else:
            self._discard_buffer()
            fetch = self._start_fetch(decision.start, decision.end)
            self._buffered = BufferedRange(SourceKind.LIVE_FETCH, decision.start, b"", decision.end, fetch)
            self._buffered.skip_to(self._position)

    def _start_fetch(self, start: int, end: int) -> RangeFetch:
        whole_object = start == 0 and end == self._size
        fetch = RangeFetch(self._transport, self.handle, start, end, self.options,
                           expected_crc32c=self.info.crc32c if whole_object else None,
                           on_unverified=self._report_unverified)
        self._inflight = fetch
        self.fetch_count += 1
        if self.closed:
            # close() ran between the decision and here
            fetch.close()
        return fetch

    def _report_unverified(self, fetch: RangeFetch) -> None:
        if self._unverified_reported:
            return
        self._unverified_reported = True
        logger.warning(
            "checksums enabled but %s sends no per-chunk CRC32C; only whole-object reads of %s are verified "
            "(first unverified range [%d, %d))",
            type(self._transport).__name__, self.handle, fetch.start, fetch.end,
        )

    def _fetch_footer(self, start: int, end: int) -> bytes:
        fetch = self._start_fetch(start, end)
        try:
            return fetch.read_all()
        finally:
            self._inflight = None

    def _discard_buffer(self) -> None:
        buffered, self._buffered = self._buffered, None
        if buffered is not None:
            buffered.release()
            if buffered.fetch is self._inflight:
                self._inflight = None

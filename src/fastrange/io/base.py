"""Base protocols and shared types for the transport layer."""

from __future__ import annotations
import enum
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Protocol, Sequence, runtime_checkable

from ..core.model import ObjectHandle, ObjectInfo
from ..core.options import DEFAULT_CHUNK_SIZE

__all__ = [
    "Chunk", "RangeStream", "ObjectTransport",
    "RequestEvent", "MessageDirection", "Interceptor", "RequestTrace",
    "DEFAULT_CHUNK_SIZE",
]


@dataclass(frozen=True, slots=True)
class Chunk:
    """One message of a range stream."""

    data: bytes
    crc32c: Optional[int] = None   # checksum of `data` as computed by the server


@runtime_checkable
class RangeStream(Protocol):
    """Finite, non-restartable iterator of chunks for one range request.

    Exhaustion (StopIteration) means the server finished the response; it says
    nothing about whether every requested byte arrived. close() may be called
    from another thread and must make a blocked __next__ fail promptly.
    """

    def __iter__(self) -> Iterator[Chunk]:
        ...

    def __next__(self) -> Chunk:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class ObjectTransport(Protocol):
    """Protocol for object store transports."""

    requests_made: int   # running total
    bytes_fetched: int   # running total

    def stat(self, handle: ObjectHandle) -> ObjectInfo:
        """Return object metadata; exists=False when the object is missing."""
        ...

    def open_range(self, handle: ObjectHandle, start: int, end: int) -> RangeStream:
        """Start streaming bytes [start, end) of the object.

        Retryable failures raise TransientTransportError, others FetchFailedError.
        """
        ...

    def write_object(self, handle: ObjectHandle, data: bytes) -> ObjectInfo:
        """Create or overwrite the object in a single request."""
        ...

    def close(self) -> None:
        ...


class MessageDirection(str, enum.Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class RequestEvent:
    direction: MessageDirection
    request_kind: str            # "read" | "write" | "metadata"
    bucket: str
    object_name: str
    elapsed_ms: float            # since the request was sent
    wire_size: Optional[int] = None


Interceptor = Callable[[RequestEvent], None]


class RequestTrace:
    """Reports the messages of one request to the registered interceptors."""

    def __init__(self, interceptors: Sequence[Interceptor], request_kind: str, handle: ObjectHandle):
        self._interceptors = tuple(interceptors)
        self._kind = request_kind
        self._handle = handle
        self._started = time.monotonic()

    def _emit(self, direction: MessageDirection, wire_size: Optional[int]) -> None:
        if not self._interceptors:
            return
        event = RequestEvent(
            direction=direction,
            request_kind=self._kind,
            bucket=self._handle.bucket,
            object_name=self._handle.name,
            elapsed_ms=(time.monotonic() - self._started) * 1000.0,
            wire_size=wire_size,
        )
        for interceptor in self._interceptors:
            interceptor(event)

    def outbound(self, wire_size: int = 0) -> None:
        self._emit(MessageDirection.OUTBOUND, wire_size)

    def inbound(self, wire_size: int) -> None:
        self._emit(MessageDirection.INBOUND, wire_size)

    def complete(self) -> None:
        self._emit(MessageDirection.COMPLETE, None)

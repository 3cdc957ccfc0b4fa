"""Error taxonomy shared by the channel, the fetcher and the transports."""

from __future__ import annotations


class ObjectNotFoundError(FileNotFoundError):
    """Raised when an object does not exist at open time."""


class InvalidArgumentError(ValueError):
    """Raised for programmer errors: bad offsets, bad names, bad options."""


class ClosedChannelError(InvalidArgumentError):
    """Raised by any operation on a channel after close()."""


class ChecksumMismatchError(IOError):
    """Raised when a received chunk does not match its checksum."""

    def __init__(self, message: str, expected: int | None = None, actual: int | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class TruncatedReadError(IOError):
    """Raised when a range stream ends before its requested end offset."""


class TransientTransportError(IOError):
    """Retryable transport failure. Never escapes the range fetcher."""


class FetchFailedError(IOError):
    """Raised when a fetch fails permanently or its retries are exhausted."""


__all__ = [
    "ObjectNotFoundError",
    "InvalidArgumentError",
    "ClosedChannelError",
    "ChecksumMismatchError",
    "TruncatedReadError",
    "TransientTransportError",
    "FetchFailedError",
]

"""
Read and storage configuration.

Both option sets are immutable and validated on construction so that a bad
value fails when the channel or transport is built, not halfway through a read.
"""
from __future__ import annotations

import enum
import os
from dataclasses import dataclass

from .errors import InvalidArgumentError

__all__ = ["AccessPattern", "ReadOptions", "StorageOptions"]

KiB = 1024
MiB = 1024 * KiB

DEFAULT_ENDPOINT = "https://storage.googleapis.com"
DEFAULT_CHUNK_SIZE = 2 * MiB   # the server streams ranges in 2 MiB messages


class AccessPattern(str, enum.Enum):
    """Hint describing how the caller is expected to move through an object."""

    SEQUENTIAL = "sequential"
    RANDOM = "random"
    AUTO = "auto"


@dataclass(frozen=True)
class ReadOptions:
    """
    Options supplied when a read channel is opened.

    Attributes:
        access_pattern: Drives how far past the requested bytes a new range fetch reaches.
        inplace_seek_limit: Largest forward skip served by discarding bytes from the
            live stream instead of issuing a new range request.
        min_range_request_size: Floor on the size of a range request. Also the size of
            the trailing footer zone cached per channel.
        checksums_enabled: Validate the CRC32C of every received chunk, and of the whole
            object when a fetch covers all of it.
        fetch_deadline_s: Upper bound on the time one fetch spends, retries included.
        max_fetch_attempts: Range requests one fetch may open before a transient failure is fatal.
        retry_backoff_s: Multiplier for the exponential backoff between attempts.
        retry_backoff_max_s: Cap on a single backoff sleep.
    """
    access_pattern: AccessPattern = AccessPattern.AUTO
    inplace_seek_limit: int = 8 * KiB
    min_range_request_size: int = 4 * KiB
    checksums_enabled: bool = False
    fetch_deadline_s: float = 60.0
    max_fetch_attempts: int = 3
    retry_backoff_s: float = 0.1
    retry_backoff_max_s: float = 2.0

    def __post_init__(self):
        """Validate options on construction."""
        if not isinstance(self.access_pattern, AccessPattern):
            try:
                object.__setattr__(self, "access_pattern", AccessPattern(str(self.access_pattern).lower()))
            except ValueError:
                raise InvalidArgumentError(f"Unknown access pattern: {self.access_pattern!r}")

        if self.inplace_seek_limit < 0:
            raise InvalidArgumentError(f"inplace_seek_limit must be non-negative, got {self.inplace_seek_limit}")

        if self.min_range_request_size <= 0:
            raise InvalidArgumentError(f"min_range_request_size must be positive, got {self.min_range_request_size}")

        if self.fetch_deadline_s <= 0:
            raise InvalidArgumentError(f"fetch_deadline_s must be positive, got {self.fetch_deadline_s}")

        if self.max_fetch_attempts < 1:
            raise InvalidArgumentError(f"max_fetch_attempts must be at least 1, got {self.max_fetch_attempts}")

        if self.retry_backoff_s < 0 or self.retry_backoff_max_s < 0:
            raise InvalidArgumentError("retry backoff values must be non-negative")

    @property
    def footer_zone_size(self) -> int:
        return self.min_range_request_size


@dataclass(frozen=True)
class StorageOptions:
    """
    Options for building a transport.

    Attributes:
        endpoint: Base URL of the object store, or ``memory://`` for the in-process store.
        timeout_s: Per-request HTTP timeout.
        chunk_size: Size of the messages a range stream is split into.
        trace_log_enabled: Attach a TracingInterceptor to the transport.
    """
    endpoint: str = DEFAULT_ENDPOINT
    timeout_s: float = 60.0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    trace_log_enabled: bool = False

    def __post_init__(self):
        if not self.endpoint:
            raise InvalidArgumentError("endpoint is required")
        if self.timeout_s <= 0:
            raise InvalidArgumentError(f"timeout_s must be positive, got {self.timeout_s}")
        if self.chunk_size <= 0:
            raise InvalidArgumentError(f"chunk_size must be positive, got {self.chunk_size}")

    @classmethod
    def from_env(cls) -> StorageOptions:
        """
        Load storage options from environment variables.

        Environment Variables:
            - FASTRANGE_ENDPOINT (default: https://storage.googleapis.com)
            - FASTRANGE_TIMEOUT (default: 60.0)
            - FASTRANGE_CHUNK_SIZE (default: 2 MiB)
            - FASTRANGE_TRACE (default: false)
        """
        try:
            return cls(
                endpoint=os.getenv("FASTRANGE_ENDPOINT", DEFAULT_ENDPOINT),
                timeout_s=float(os.getenv("FASTRANGE_TIMEOUT", "60.0")),
                chunk_size=int(os.getenv("FASTRANGE_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE))),
                trace_log_enabled=_env_flag("FASTRANGE_TRACE"),
            )
        except ValueError as e:
            if isinstance(e, InvalidArgumentError):
                raise
            raise InvalidArgumentError(f"Invalid storage configuration in environment: {e}") from e


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in {"1", "true", "yes", "on"}

"""fastrange - seekable, round-trip-minimising reads of remote objects."""

from .core.model import ObjectHandle, ObjectInfo                       # re-export
from .core.options import AccessPattern, ReadOptions, StorageOptions
from .core.errors import (
    ObjectNotFoundError, InvalidArgumentError, ClosedChannelError, ChecksumMismatchError,
    TruncatedReadError, TransientTransportError, FetchFailedError,
)
from .channel import ReadChannel
from .io import open_transport
from .storage import ObjectStorage


def open_channel(uri, *, endpoint: str | None = None, read_options: ReadOptions | None = None,
                 storage: ObjectStorage | None = None) -> ReadChannel:
    """Open a read channel on a ``gs://bucket/object`` URI or an ObjectHandle."""
    handle = uri if isinstance(uri, ObjectHandle) else ObjectHandle.from_uri(str(uri))
    storage = storage or ObjectStorage(open_transport(endpoint))
    return storage.open(handle, read_options)


__all__ = [
    "open_channel", "open_transport",
    "ObjectHandle", "ObjectInfo", "ObjectStorage", "ReadChannel",
    "AccessPattern", "ReadOptions", "StorageOptions",
    "ObjectNotFoundError", "InvalidArgumentError", "ClosedChannelError", "ChecksumMismatchError",
    "TruncatedReadError", "TransientTransportError", "FetchFailedError",
]

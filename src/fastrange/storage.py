"""
Object storage facade.

Resolves object metadata, opens read channels and performs simple writes on top
of any ObjectTransport.
"""
from __future__ import annotations

import logging
from typing import Optional

from .channel import ReadChannel
from .core.errors import ObjectNotFoundError
from .core.model import ObjectHandle, ObjectInfo
from .core.options import ReadOptions
from .io.base import ObjectTransport

__all__ = ["ObjectStorage"]

logger = logging.getLogger(__name__)


class ObjectStorage:
    """
    Entry point for reading and writing objects through one transport.

    Args:
        transport: Any ObjectTransport (HTTP or in-memory)
        read_options: Defaults for channels opened without explicit options
    """

    def __init__(self, transport: ObjectTransport, *, read_options: Optional[ReadOptions] = None) -> None:
        self.transport = transport
        self.read_options = read_options or ReadOptions()

    def get_item_info(self, handle: ObjectHandle) -> ObjectInfo:
        """Return metadata for `handle`; `exists` is False when it is missing."""
        return self.transport.stat(handle)

    def open(self, handle: ObjectHandle, read_options: Optional[ReadOptions] = None) -> ReadChannel:
        """
        Open a read channel on an existing object.

        The object is resolved exactly once; the channel then reads the
        generation that was current at this moment.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """
        info = self.get_item_info(handle)
        if not info.exists:
            raise ObjectNotFoundError(f"Item not found: {handle}")
        return ReadChannel(self.transport, info, read_options or self.read_options)

    def create_object(self, handle: ObjectHandle, data: bytes) -> ObjectInfo:
        """Create or overwrite an object with `data` in a single request."""
        info = self.transport.write_object(handle, data)
        logger.debug("wrote %d bytes to %s (generation=%s)", info.size, handle, info.generation)
        return info

    def create_empty_object(self, handle: ObjectHandle) -> ObjectInfo:
        return self.create_object(handle, b"")

    def close(self) -> None:
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

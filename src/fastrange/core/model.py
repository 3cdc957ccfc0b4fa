from __future__ import annotations
from dataclasses import dataclass
from urllib.parse import urlparse

from .errors import InvalidArgumentError

SCHEME = "gs"


@dataclass(frozen=True, slots=True)
class ObjectHandle:
    bucket: str
    name: str
    generation: int | None = None

    def __post_init__(self):
        if not self.bucket:
            raise InvalidArgumentError("bucket name cannot be empty")
        if not self.name:
            raise InvalidArgumentError(f"object name cannot be empty in bucket {self.bucket!r}")
        if "\r" in self.name or "\n" in self.name:
            raise InvalidArgumentError(f"Invalid object name {self.name!r}: CR and LF are not allowed")

    @classmethod
    def from_uri(cls, uri: str) -> ObjectHandle:
        """Parse ``gs://bucket/path/to/object[#generation]``."""
        parsed = urlparse(uri)
        if parsed.scheme != SCHEME:
            raise InvalidArgumentError(f"Expected {SCHEME}:// URI, got {uri!r}")
        generation = None
        if parsed.fragment:
            if not parsed.fragment.isdigit():
                raise InvalidArgumentError(f"Invalid generation in {uri!r}")
            generation = int(parsed.fragment)
        return cls(parsed.netloc, parsed.path.lstrip("/"), generation)

    def with_generation(self, generation: int | None) -> ObjectHandle:
        return ObjectHandle(self.bucket, self.name, generation)

    def __str__(self) -> str:
        return f"{SCHEME}://{self.bucket}/{self.name}"


@dataclass(frozen=True, slots=True)
class ObjectInfo:
    handle: ObjectHandle
    exists: bool
    size: int = 0
    generation: int | None = None
    crc32c: int | None = None   # whole-object checksum, when the store reports one

    @classmethod
    def missing(cls, handle: ObjectHandle) -> ObjectInfo:
        return cls(handle=handle, exists=False)

    def as_dict(self) -> dict:
        return {
            "uri": str(self.handle),
            "exists": self.exists,
            "size": self.size,
            "generation": self.generation,
            "crc32c": self.crc32c,
        }

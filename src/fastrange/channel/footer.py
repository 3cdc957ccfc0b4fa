"""Per-channel cache of the trailing bytes of an object."""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FooterEntry:
    start: int
    end: int        # always the object size
    data: bytes

    def __post_init__(self):
        if self.end - self.start != len(self.data):
            raise ValueError(f"Footer [{self.start}, {self.end}) holds {len(self.data)} bytes")


class FooterCache:
    """Trailing bytes of one object, fetched at most once per channel.

    Many binary formats keep their metadata at the end of the file and readers
    go back there repeatedly. The first read landing in the last `zone_size`
    bytes fetches the whole zone (the whole object when it is smaller than the
    zone) and every later read in the zone is served from memory.
    """

    def __init__(self, zone_size: int, object_size: int, fetch: Callable[[int, int], bytes]):
        if zone_size <= 0:
            raise ValueError(f"zone_size must be positive, got {zone_size}")
        self.zone_size = zone_size
        self.object_size = object_size
        self.fetches = 0
        self._fetch = fetch
        self._entry: Optional[FooterEntry] = None

    @property
    def zone_start(self) -> int:
        return max(0, self.object_size - self.zone_size)

    @property
    def entry(self) -> Optional[FooterEntry]:
        return self._entry

    def in_zone(self, position: int) -> bool:
        return self.zone_start <= position < self.object_size

    def maybe_serve(self, position: int) -> Optional[FooterEntry]:
        """Return the footer entry covering `position`, fetching it on first use."""
        if not self.in_zone(position):
            return None
        if self._entry is None:
            start = self.zone_start
            logger.debug("caching footer [%d, %d)", start, self.object_size)
            self.fetches += 1
            self._entry = FooterEntry(start, self.object_size, self._fetch(start, self.object_size))
        return self._entry

    def clear(self) -> None:
        self._entry = None

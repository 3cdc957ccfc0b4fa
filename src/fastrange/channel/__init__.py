"""Range-read channel: seek policy driver, range fetcher and footer cache."""

from .fetcher import RangeFetch, FetchState
from .footer import FooterCache, FooterEntry
from .read_channel import ReadChannel, BufferedRange, SourceKind

__all__ = [
    "RangeFetch", "FetchState",
    "FooterCache", "FooterEntry",
    "ReadChannel", "BufferedRange", "SourceKind",
]

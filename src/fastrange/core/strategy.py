"""Seek policy: decides how the next read is served. No I/O happens here."""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from .options import AccessPattern, ReadOptions

logger = logging.getLogger(__name__)

# contiguous reads an AUTO channel must observe before sizing fetches to the end
AUTO_UPGRADE_THRESHOLD = 2


# --- access-pattern states ---

@dataclass(frozen=True, slots=True)
class Sequential:
    def observe(self, contiguous: bool) -> Sequential:
        return self

    @property
    def sizing(self) -> AccessPattern:
        return AccessPattern.SEQUENTIAL


@dataclass(frozen=True, slots=True)
class Random:
    def observe(self, contiguous: bool) -> Random:
        return self

    @property
    def sizing(self) -> AccessPattern:
        return AccessPattern.RANDOM


@dataclass(frozen=True, slots=True)
class Auto:
    contiguous_reads: int = 0

    def observe(self, contiguous: bool) -> Auto:
        # a seek anywhere else drops back to random sizing
        return Auto(self.contiguous_reads + 1) if contiguous else Auto(0)

    @property
    def sizing(self) -> AccessPattern:
        if self.contiguous_reads >= AUTO_UPGRADE_THRESHOLD:
            return AccessPattern.SEQUENTIAL
        return AccessPattern.RANDOM


PatternState = Union[Sequential, Random, Auto]

_INITIAL_STATE: dict[AccessPattern, Callable[[], PatternState]] = {
    AccessPattern.SEQUENTIAL: Sequential,
    AccessPattern.RANDOM: Random,
    AccessPattern.AUTO: Auto,
}


def initial_pattern(pattern: AccessPattern) -> PatternState:
    return _INITIAL_STATE[pattern]()


# --- request sizing ---

def _read_to_end(position: int, requested: int, min_range: int, object_size: int) -> int:
    return object_size


def _clipped(position: int, requested: int, min_range: int, object_size: int) -> int:
    return min(object_size, position + max(requested, min_range))


_REQUEST_END: dict[AccessPattern, Callable[[int, int, int, int], int]] = {
    AccessPattern.SEQUENTIAL: _read_to_end,
    AccessPattern.RANDOM: _clipped,
}


def request_end(state: PatternState, position: int, requested: int, options: ReadOptions, object_size: int) -> int:
    """Exclusive end offset of a new range fetch starting at `position`."""
    return _REQUEST_END[state.sizing](position, requested, options.min_range_request_size, object_size)


def footer_zone_start(options: ReadOptions, object_size: int) -> int:
    return max(0, object_size - options.footer_zone_size)


# --- decision table ---

class RangeView(Protocol):
    """Read-only view of the channel's buffered range."""

    start: int
    cursor: int

    @property
    def end(self) -> int: ...      # exclusive end of the bytes held in memory

    @property
    def limit(self) -> int: ...    # exclusive end of the bytes this range can ever reach

    @property
    def live(self) -> bool: ...    # backed by an unfinished fetch stream


class Action(enum.Enum):
    REUSE = "reuse"
    SERVE_FOOTER = "serve_footer"
    SKIP_IN_PLACE = "skip_in_place"
    NEW_FETCH = "new_fetch"


@dataclass(frozen=True, slots=True)
class ReadContext:
    position: int
    requested: int
    object_size: int
    options: ReadOptions
    pattern: PatternState
    buffered: Optional[RangeView] = None
    footer_cached: bool = False

    @property
    def in_footer_zone(self) -> bool:
        return footer_zone_start(self.options, self.object_size) <= self.position < self.object_size


@dataclass(frozen=True, slots=True)
class Decision:
    action: Action
    start: int = 0
    end: int = 0   # fetch bounds, NEW_FETCH only


def _within_buffer(ctx: ReadContext) -> bool:
    b = ctx.buffered
    return b is not None and b.start <= ctx.position < b.end


def _footer_hit(ctx: ReadContext) -> bool:
    return ctx.footer_cached and ctx.in_footer_zone


def _within_skip_limit(ctx: ReadContext) -> bool:
    b = ctx.buffered
    if b is None or not b.live or ctx.position >= b.limit:
        return False
    return 0 <= ctx.position - b.cursor <= ctx.options.inplace_seek_limit


def _footer_miss(ctx: ReadContext) -> bool:
    return ctx.in_footer_zone


# evaluated in order; the first matching row wins, NEW_FETCH otherwise
DECISION_TABLE: tuple[tuple[Callable[[ReadContext], bool], Action], ...] = (
    (_within_buffer, Action.REUSE),
    (_footer_hit, Action.SERVE_FOOTER),
    (_within_skip_limit, Action.SKIP_IN_PLACE),
    (_footer_miss, Action.SERVE_FOOTER),
)


def decide(ctx: ReadContext) -> Decision:
    """Pick the action serving `ctx.requested` bytes at `ctx.position`."""
    for predicate, action in DECISION_TABLE:
        if predicate(ctx):
            logger.debug("position=%d requested=%d -> %s", ctx.position, ctx.requested, action.value)
            return Decision(action)

    end = request_end(ctx.pattern, ctx.position, ctx.requested, ctx.options, ctx.object_size)
    logger.debug("position=%d requested=%d -> new fetch [%d, %d) sized %s",
                 ctx.position, ctx.requested, ctx.position, end, ctx.pattern.sizing.value)
    return Decision(Action.NEW_FETCH, ctx.position, end)

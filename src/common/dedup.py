# ABOUTME: Collapses rapid re-submissions of an item into counted unique reads.
# ABOUTME: Uses a greedy forward window anchored on the first event of each burst.

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, List, Tuple

from .schemas import SolveEvent

DEFAULT_READ_WINDOW = timedelta(minutes=5)


def unique_reads(history: Iterable[SolveEvent], window: timedelta = DEFAULT_READ_WINDOW) -> List[SolveEvent]:
    """
    Return the events that count as separate study sessions.

    Events are sorted by timestamp; an event is kept when it lands at least
    ``window`` after the previously kept event. The first event of a burst
    anchors the window, so a long chain of resubmits spaced slightly under
    the window still only counts once per window length.
    """

    ordered = sorted(history, key=lambda e: e.timestamp)
    accepted: List[SolveEvent] = []
    last_accepted = None
    for event in ordered:
        if last_accepted is None or event.timestamp - last_accepted >= window:
            accepted.append(event)
            last_accepted = event.timestamp
    return accepted


def unique_read_count(history: Iterable[SolveEvent], window: timedelta = DEFAULT_READ_WINDOW) -> int:
    return len(unique_reads(history, window))


def register_read(
    history: Iterable[SolveEvent],
    event: SolveEvent,
    window: timedelta = DEFAULT_READ_WINDOW,
) -> Tuple[bool, int]:
    """Report whether appending ``event`` adds a unique read, and the resulting count."""

    before = list(history)
    previous = unique_read_count(before, window)
    current = unique_read_count(before + [event], window)
    return current > previous, current

# ABOUTME: Tests unique-read deduplication of rapid resubmissions.
# ABOUTME: Covers the inclusive window boundary, burst anchoring, and idempotence.

from datetime import datetime, timedelta, timezone

from src.common.dedup import register_read, unique_read_count, unique_reads
from src.common.schemas import SolveEvent

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _at(**offset) -> SolveEvent:
    return SolveEvent(timestamp=T0 + timedelta(**offset), score=80)


def test_empty_history_yields_no_reads():
    assert unique_reads([]) == []


def test_single_event_is_kept():
    event = _at(seconds=0)
    assert unique_reads([event]) == [event]


def test_window_boundary_is_inclusive():
    first = _at(milliseconds=0)
    exactly = _at(milliseconds=300_000)
    assert unique_reads([first, exactly]) == [first, exactly]


def test_event_just_inside_window_is_dropped():
    first = _at(milliseconds=0)
    inside = _at(milliseconds=299_999)
    assert unique_reads([first, inside]) == [first]


def test_first_event_of_burst_anchors_window():
    events = [_at(minutes=m) for m in (0, 4, 8, 12)]
    kept = unique_reads(events)
    # 4 falls inside [0, 5); 8 reopens; 12 falls inside [8, 13).
    assert [e.timestamp for e in kept] == [T0, T0 + timedelta(minutes=8)]


def test_history_is_sorted_before_scanning():
    late = _at(minutes=30)
    early = _at(minutes=0)
    middle = _at(minutes=2)
    assert unique_reads([late, middle, early]) == [early, late]


def test_dedup_is_idempotent():
    events = [_at(minutes=m) for m in (0, 1, 3, 5, 6, 11, 11, 40, 41, 44, 46)]
    once = unique_reads(events)
    assert unique_reads(once) == once
    assert unique_read_count(events) == len(once)


def test_custom_window():
    events = [_at(minutes=0), _at(minutes=2)]
    assert len(unique_reads(events, window=timedelta(minutes=1))) == 2


def test_register_read_reports_increase():
    history = [_at(minutes=0)]
    assert register_read(history, _at(minutes=1)) == (False, 1)
    assert register_read(history, _at(minutes=10)) == (True, 2)

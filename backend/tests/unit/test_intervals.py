from datetime import datetime, timedelta, timezone

from slotsync.domain.intervals import Interval, ensure_utc, first_overlap, merge_intervals


def at(hour, minute=0):
    return datetime(2025, 3, 10, hour, minute, tzinfo=timezone.utc)


def test_merge_collapses_overlapping_and_touching():
    merged = merge_intervals([
        Interval(at(11), at(12)),
        Interval(at(9), at(10)),
        Interval(at(10), at(10, 30)),  # touches previous
        Interval(at(11, 30), at(11, 45)),  # contained
    ])
    assert merged == [Interval(at(9), at(10, 30)), Interval(at(11), at(12))]


def test_merge_drops_empty_intervals():
    assert merge_intervals([Interval(at(9), at(9)), Interval(at(10), at(9))]) == []


def test_first_overlap_is_half_open():
    busy = [Interval(at(10), at(10, 30))]
    assert first_overlap(Interval(at(9, 30), at(10)), busy) is None
    assert first_overlap(Interval(at(10, 30), at(11)), busy) is None
    assert first_overlap(Interval(at(10, 15), at(10, 45)), busy) == busy[0]


def test_widened_applies_buffers_on_both_sides():
    iv = Interval(at(10), at(10, 30)).widened(timedelta(minutes=5), timedelta(minutes=10))
    assert iv == Interval(at(9, 55), at(10, 40))


def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2025, 1, 1, 12, 0)
    assert ensure_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    offset = datetime(2025, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert ensure_utc(offset).hour == 10

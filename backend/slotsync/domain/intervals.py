"""Half-open time intervals on absolute (UTC) instants."""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def widened(self, before: timedelta, after: timedelta) -> "Interval":
        return Interval(self.start - before, self.end + after)


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Collapse overlapping or touching intervals into a minimal sorted set."""
    ordered = sorted(i for i in intervals if i.end > i.start)
    merged: List[Interval] = []
    for current in ordered:
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def first_overlap(candidate: Interval, merged: List[Interval]) -> Interval | None:
    """Return the first busy interval intersecting ``candidate`` (``merged`` must be sorted)."""
    for busy in merged:
        if busy.start >= candidate.end:
            break
        if busy.overlaps(candidate):
            return busy
    return None

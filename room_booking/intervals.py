"""Half-open time intervals and the daily working window.

All intervals are ``[start, end)``: touching endpoints do not overlap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterator


@dataclass(frozen=True)
class Interval:
    """A half-open ``[start, end)`` span of time."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise ValueError(f"interval start must be before end: {self.start} >= {self.end}")

    def __iter__(self) -> Iterator[datetime]:
        yield self.start
        yield self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class WorkingWindow:
    """The open-for-booking range of a single day."""

    day_start: datetime
    day_end: datetime


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def contains(outer: Interval, inner: Interval) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def working_window(day: date, tz: tzinfo, start_hour: int, end_hour: int) -> WorkingWindow:
    """Anchor the fixed working hours onto ``day`` in time zone ``tz``.

    The end is computed as an offset from midnight so that an end hour of 24
    closes the window at the following midnight. Both bounds are returned in
    UTC so later arithmetic is not affected by DST transitions.
    """
    midnight = datetime.combine(day, time(0, 0), tzinfo=tz)
    return WorkingWindow(
        day_start=(midnight + timedelta(hours=start_hour)).astimezone(timezone.utc),
        day_end=(midnight + timedelta(hours=end_hour)).astimezone(timezone.utc),
    )


def iter_days(start: datetime, end: datetime) -> Iterator[date]:
    """Yield every calendar date from ``start`` to ``end`` inclusive."""
    current = start.date()
    last = end.date()
    while current <= last:
        yield current
        current += timedelta(days=1)

"""Free slot generation for a single room and a single day.

Candidate slots are emitted at a fixed step inside every free gap of the
working window, so consecutive slots overlap whenever the step is shorter
than the meeting duration (09:00-10:00, 09:15-10:15, ...). Callers get every
start time that fits, not a tiling of the day.
"""

from datetime import datetime, timedelta
from typing import Iterable, List

from .errors import ValidationError
from .intervals import Interval, WorkingWindow
from .models import TimeSlot

DEFAULT_STEP_MINUTES = 15


def _fill_gap(
    cursor: datetime,
    gap_end: datetime,
    duration: timedelta,
    step: timedelta,
    room_id: str,
    out: List[TimeSlot],
) -> datetime:
    """Append every slot starting at ``cursor`` + n * ``step`` that ends by ``gap_end``.

    Returns the advanced cursor.
    """
    while cursor + duration <= gap_end:
        out.append(TimeSlot(start=cursor, end=cursor + duration, roomId=room_id, isAvailable=True))
        cursor += step
    return cursor


def generate_slots(
    window: WorkingWindow,
    busy_periods: Iterable[Interval],
    duration_minutes: int,
    room_id: str,
    step_minutes: int = DEFAULT_STEP_MINUTES,
) -> List[TimeSlot]:
    """Return the free slots of ``duration_minutes`` inside ``window``.

    Busy periods may be unsorted, overlapping or reach outside the window;
    the cursor only ever moves forward so none of that produces a slot that
    intersects a busy period it has passed.
    """
    if duration_minutes <= 0:
        raise ValidationError("Duration must be a positive number of minutes")
    if step_minutes <= 0:
        raise ValidationError("Slot step must be a positive number of minutes")

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    slots: List[TimeSlot] = []

    cursor = window.day_start
    for busy in sorted(busy_periods, key=lambda b: b.start):
        if cursor < busy.start:
            gap_end = min(busy.start, window.day_end)
            cursor = _fill_gap(cursor, gap_end, duration, step, room_id, slots)
        cursor = max(cursor, busy.end)

    if cursor < window.day_end:
        _fill_gap(cursor, window.day_end, duration, step, room_id, slots)

    return slots

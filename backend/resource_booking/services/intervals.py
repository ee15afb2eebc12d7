"""
Half-open interval arithmetic.

Intervals are [start, end): two bookings that touch (one ends at 10:00, the
next starts at 10:00) do not overlap.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable


@dataclass(frozen=True, order=True)
class TimeSlot:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeSlot") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def gaps(range_start: datetime, range_end: datetime, busy: Iterable[TimeSlot]) -> list[TimeSlot]:
    """
    Free intervals of [range_start, range_end) not covered by `busy`.

    `busy` is expected sorted by start. Slots reaching outside the range are
    clipped, and overlapping slots are tolerated (the cursor only moves forward).
    """
    free = []
    cursor = range_start
    for slot in busy:
        if slot.end <= cursor:
            continue
        if slot.start >= range_end:
            break
        if slot.start > cursor:
            free.append(TimeSlot(cursor, slot.start))
        cursor = max(cursor, slot.end)
        if cursor >= range_end:
            break
    if cursor < range_end:
        free.append(TimeSlot(cursor, range_end))
    return free


def utc_day(instant: datetime) -> date:
    """Calendar day of an instant, in UTC."""
    return instant.astimezone(timezone.utc).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[00:00, next 00:00) of a UTC calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)

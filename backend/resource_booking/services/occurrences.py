"""
Virtual occurrences of unbounded series.

Unbounded series have no materialized rows (apart from cancellation
exceptions), so both the conflict detector and the availability calculator
expand them on demand over a window and drop cancelled dates. Cancellation is
matched by series and UTC calendar day.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable
from uuid import UUID

from resource_booking.models import BookingInstance
from resource_booking.services.interfaces.store import UNLOCKED, BookingStore, LockingStrategy
from resource_booking.services.intervals import day_bounds, utc_day
from resource_booking.services.recurrence_service import RecurrenceEngine, parse_rule


@dataclass(frozen=True)
class Occurrence:
    series_id: UUID
    start: datetime
    end: datetime


class CancelledDays:
    """Predicate: is (series, day of `start`) cancelled?"""

    def __init__(self, exceptions: Iterable[BookingInstance] = ()):
        self._days: set[tuple[UUID, date]] = {
            (instance.series_id, utc_day(instance.start_time)) for instance in exceptions
        }

    def __call__(self, series_id: UUID, start: datetime) -> bool:
        return (series_id, utc_day(start)) in self._days

    def __len__(self) -> int:
        return len(self._days)


async def expand_unbounded_series(
    store: BookingStore,
    engine: RecurrenceEngine,
    resource_id: str,
    window_start: datetime,
    window_end: datetime,
    padding: timedelta = timedelta(0),
    locking: LockingStrategy = UNLOCKED,
) -> list[Occurrence]:
    """
    Non-cancelled occurrences of the resource's unbounded series that may
    touch [window_start, window_end).

    The window is widened by `padding` on both sides (and by the series'
    own duration on the left) so an occurrence that starts before the
    window but runs into it is still produced. Callers do the exact
    overlap test.
    """
    series_list = await store.find_unbounded_series(resource_id, lock=locking.series)
    if not series_list:
        return []

    longest = max(series.duration for series in series_list)
    lower = window_start - max(padding, longest)
    upper = window_end + padding

    exceptions = await store.find_exceptions(
        [series.id for series in series_list],
        day_bounds(utc_day(lower))[0],
        day_bounds(utc_day(upper))[1],
        lock=locking.exceptions,
    )
    is_cancelled = CancelledDays(exceptions)

    occurrences = []
    for series in series_list:
        duration = series.duration
        starts = engine.occurrences_between(
            parse_rule(series.recurrence_rule),
            series.start_time,
            window_start - max(padding, duration),
            upper,
        )
        occurrences.extend(
            Occurrence(series.id, start, start + duration)
            for start in starts
            if not is_cancelled(series.id, start)
        )
    return occurrences

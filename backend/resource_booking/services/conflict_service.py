"""
Conflict detection.

A candidate booking (single window, or every occurrence of a recurring rule)
conflicts with:
  a. materialized, non-exception instances of the same resource whose
     interval overlaps a candidate window, and
  b. virtual occurrences of the resource's unbounded series (expanded over a
     padded window, cancelled dates removed) that overlap a candidate window.

The same algorithm serves the read-only preview and the creation
transaction; only the LockingStrategy differs. Under COMMIT_LOCKS the
resource writer lock is taken first, then materialized rows FOR UPDATE and
unbounded series / exception rows FOR SHARE.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from resource_booking.core.clock import ensure_utc
from resource_booking.core.exceptions import InvalidTimeRange
from resource_booking.core.logging import get_logger
from resource_booking.core.metrics import record_conflict_check
from resource_booking.services.interfaces.store import UNLOCKED, BookingStore, LockingStrategy
from resource_booking.services.intervals import TimeSlot, overlaps
from resource_booking.services.occurrences import expand_unbounded_series
from resource_booking.services.recurrence_service import RecurrenceEngine, RuleInput, coerce_rule

logger = get_logger(__name__)


@dataclass(frozen=True)
class Conflict:
    """
    An existing commitment overlapping a candidate window.

    booking_id is the instance id for materialized rows, and the series id for
    virtual occurrences of an unbounded series.
    """

    booking_id: UUID
    series_id: Optional[UUID]
    start_time: datetime
    end_time: datetime
    virtual: bool = False

    @property
    def key(self) -> tuple:
        return (self.booking_id, self.start_time, self.end_time)


class ConflictDetector:
    def __init__(
        self,
        store: BookingStore,
        engine: RecurrenceEngine,
        padding: timedelta = timedelta(days=7),
    ):
        self.store = store
        self.engine = engine
        self.padding = padding

    def candidate_windows(
        self, start: datetime, end: datetime, rule: Optional[RuleInput] = None
    ) -> list[TimeSlot]:
        rule = coerce_rule(rule)
        if rule is None:
            return [TimeSlot(start, end)]
        duration = end - start
        return [TimeSlot(occurrence, occurrence + duration) for occurrence in self.engine.expand(rule, start, end)]

    async def find_conflicts(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        rule: Optional[RuleInput] = None,
        locking: LockingStrategy = UNLOCKED,
    ) -> list[Conflict]:
        start, end = ensure_utc(start), ensure_utc(end)
        if start >= end:
            raise InvalidTimeRange("start_time must be before end_time")
        windows = self.candidate_windows(start, end, rule)
        return await self.conflicts_for_windows(resource_id, windows, locking)

    async def conflicts_for_window(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        locking: LockingStrategy = UNLOCKED,
    ) -> list[Conflict]:
        return await self.conflicts_for_windows(resource_id, [TimeSlot(start, end)], locking)

    async def conflicts_for_windows(
        self,
        resource_id: str,
        windows: list[TimeSlot],
        locking: LockingStrategy = UNLOCKED,
    ) -> list[Conflict]:
        if not windows:
            return []
        record_conflict_check(locking.is_locking)

        if locking.resource:
            await self.store.lock_resource(resource_id)

        windows = sorted(windows)
        span_start = windows[0].start
        span_end = max(window.end for window in windows)

        found: dict[tuple, Conflict] = {}

        instances = await self.store.find_overlapping_instances(
            resource_id, span_start, span_end, lock=locking.instances
        )
        for instance in instances:
            for window in windows:
                if overlaps(instance.start_time, instance.end_time, window.start, window.end):
                    conflict = Conflict(
                        booking_id=instance.id,
                        series_id=instance.series_id,
                        start_time=instance.start_time,
                        end_time=instance.end_time,
                    )
                    found.setdefault(conflict.key, conflict)
                    break

        occurrences = await expand_unbounded_series(
            self.store,
            self.engine,
            resource_id,
            span_start,
            span_end,
            padding=self.padding,
            locking=locking,
        )
        for occurrence in occurrences:
            for window in windows:
                if overlaps(occurrence.start, occurrence.end, window.start, window.end):
                    conflict = Conflict(
                        booking_id=occurrence.series_id,
                        series_id=occurrence.series_id,
                        start_time=occurrence.start,
                        end_time=occurrence.end,
                        virtual=True,
                    )
                    found.setdefault(conflict.key, conflict)
                    break

        conflicts = sorted(found.values(), key=lambda c: (c.start_time, str(c.booking_id)))
        if conflicts:
            logger.debug(
                "conflicts_found",
                resource_id=resource_id,
                windows=len(windows),
                conflicts=len(conflicts),
                locked=locking.is_locking,
            )
        return conflicts

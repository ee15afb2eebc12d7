"""
Availability: the free gaps of a resource within [range_start, range_end).

Busy time is the union of materialized non-exception instances overlapping
the range and the non-cancelled virtual occurrences of unbounded series that
overlap it. Read-only; runs without locks.
"""

from datetime import datetime

from resource_booking.core.clock import ensure_utc
from resource_booking.core.exceptions import InvalidRange
from resource_booking.core.logging import get_logger
from resource_booking.services.interfaces.store import BookingStore
from resource_booking.services.intervals import TimeSlot, gaps, overlaps
from resource_booking.services.occurrences import expand_unbounded_series
from resource_booking.services.recurrence_service import RecurrenceEngine

logger = get_logger(__name__)


class AvailabilityCalculator:
    def __init__(self, store: BookingStore, engine: RecurrenceEngine):
        self.store = store
        self.engine = engine

    async def busy_slots(
        self, resource_id: str, range_start: datetime, range_end: datetime
    ) -> list[TimeSlot]:
        """Busy intervals touching the range, sorted by start and deduplicated on (start, end)."""
        instances = await self.store.find_overlapping_instances(resource_id, range_start, range_end)
        busy = {TimeSlot(instance.start_time, instance.end_time) for instance in instances}

        occurrences = await expand_unbounded_series(
            self.store, self.engine, resource_id, range_start, range_end
        )
        busy.update(
            TimeSlot(occurrence.start, occurrence.end)
            for occurrence in occurrences
            if overlaps(occurrence.start, occurrence.end, range_start, range_end)
        )
        return sorted(busy)

    async def availability(
        self, resource_id: str, range_start: datetime, range_end: datetime
    ) -> list[TimeSlot]:
        range_start, range_end = ensure_utc(range_start), ensure_utc(range_end)
        if range_start >= range_end:
            raise InvalidRange("start_date must be before end_date")

        busy = await self.busy_slots(resource_id, range_start, range_end)
        free = gaps(range_start, range_end, busy)
        logger.debug(
            "availability_computed",
            resource_id=resource_id,
            busy=len(busy),
            free=len(free),
        )
        return free

"""
Slot recommendation for rejected bookings.

Search starts at max(from_time, now) and never goes past now + horizon.

  with a rule     walk the rule's occurrences from the search start and keep
                  each conflict-free window, up to max_slots
  without a rule  probe [t, t + duration), advancing t by `step`, and return
                  the first conflict-free window (at most one slot)

A rule that cannot be expanded falls back to the single-slot search.
"""

from datetime import datetime, timedelta
from typing import Optional

from resource_booking.core.clock import Clock, ensure_utc, utc_now
from resource_booking.core.exceptions import InvalidRecurrenceRule, InvalidTimeRange
from resource_booking.core.logging import get_logger
from resource_booking.core.metrics import recommended_slots
from resource_booking.services.conflict_service import ConflictDetector
from resource_booking.services.intervals import TimeSlot
from resource_booking.services.recurrence_service import RecurrenceEngine, RuleInput

logger = get_logger(__name__)


class SlotRecommender:
    def __init__(
        self,
        detector: ConflictDetector,
        engine: RecurrenceEngine,
        clock: Clock = utc_now,
        horizon: timedelta = timedelta(days=90),
        step: timedelta = timedelta(hours=1),
    ):
        self.detector = detector
        self.engine = engine
        self.clock = clock
        self.horizon = horizon
        self.step = step

    async def next_available_slots(
        self,
        resource_id: str,
        from_time: datetime,
        duration: timedelta,
        rule: Optional[RuleInput] = None,
        max_slots: int = 5,
    ) -> list[TimeSlot]:
        if max_slots <= 0:
            return []
        if duration <= timedelta(0):
            raise InvalidTimeRange("duration must be positive")

        now = self.clock()
        search_start = max(ensure_utc(from_time), now)
        search_end = now + self.horizon

        slots = None
        if rule is not None:
            slots = await self._recurring_slots(resource_id, search_start, search_end, duration, rule, max_slots)
        if slots is None:
            slots = await self._single_slot(resource_id, search_start, search_end, duration)

        recommended_slots.observe(len(slots))
        logger.debug(
            "slots_recommended",
            resource_id=resource_id,
            recurring=rule is not None,
            found=len(slots),
        )
        return slots

    async def _recurring_slots(
        self,
        resource_id: str,
        search_start: datetime,
        search_end: datetime,
        duration: timedelta,
        rule: RuleInput,
        max_slots: int,
    ) -> Optional[list[TimeSlot]]:
        try:
            occurrences = self.engine.expand(rule, search_start, search_start + duration)
        except InvalidRecurrenceRule as e:
            logger.warning("recommendation_rule_unusable", resource_id=resource_id, error=e.message)
            return None

        slots = []
        for start in occurrences:
            if len(slots) >= max_slots or start >= search_end:
                break
            slot = TimeSlot(start, start + duration)
            if slots and slot.overlaps(slots[-1]):
                continue
            if not await self.detector.conflicts_for_window(resource_id, slot.start, slot.end):
                slots.append(slot)
        return slots

    async def _single_slot(
        self,
        resource_id: str,
        search_start: datetime,
        search_end: datetime,
        duration: timedelta,
    ) -> list[TimeSlot]:
        current = search_start
        while current < search_end:
            end = current + duration
            if not await self.detector.conflicts_for_window(resource_id, current, end):
                return [TimeSlot(current, end)]
            current += self.step
        return []

"""
Booking service: atomic validate-and-commit of booking series, cancellation
of single occurrences, and the read-only queries built on the same engine.

CONCURRENCY STRATEGY: Pessimistic Locking + Exclusion Constraint
================================================================

Problem:
  Two callers book overlapping windows on the same resource at the same time.
  Both run the conflict check, both see a free resource, both insert.
  Result: a double-booked resource.

Solution:
  The conflict check and the insert run in ONE transaction:

  1. Validate the request (time order, not in the past, rule expands to at
     least one occurrence, occurrences do not overlap each other). Invalid
     input never opens a transaction.
  2. BEGIN; take the per-resource writer lock, then read overlapping
     materialized instances FOR UPDATE and unbounded series / exception rows
     FOR SHARE while running the conflict check.
  3. Conflicts found -> ROLLBACK and return a BookingConflict with the
     conflicting bookings and recommended alternative slots.
  4. No conflicts -> insert the series and its materialized instances, COMMIT.

  The storage layer also carries an exclusion constraint over
  (resource_id, [start_time, end_time)) for non-exception rows. If a writer
  still slips through, the commit fails with an exclusion violation; that is
  converted into the same BookingConflict result, never a server error.

  Lock order is always resource lock -> instance rows -> series rows, so two
  creators on one resource queue up instead of deadlocking. Different
  resources never share a lock.

State machine per creation request:
  VALIDATING -> CONFLICT_CHECKING -> COMMITTING | ROLLING_BACK -> DONE
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union
from uuid import UUID, uuid4

from dateutil.relativedelta import relativedelta

from resource_booking.core.clock import Clock, ensure_utc, utc_now
from resource_booking.core.config import Settings
from resource_booking.core.exceptions import (
    BookingInPast,
    EmptyRecurrence,
    InputError,
    InvalidTimeRange,
    OccurrenceNotFound,
    SeriesNotFound,
    StorageConflictError,
)
from resource_booking.core.logging import get_logger
from resource_booking.core.metrics import (
    booking_latency,
    record_booking_attempt,
    record_cancellation,
    record_storage_race,
)
from resource_booking.models import BookingInstance, BookingSeries
from resource_booking.services.availability_service import AvailabilityCalculator
from resource_booking.services.conflict_service import Conflict, ConflictDetector
from resource_booking.services.interfaces.store import COMMIT_LOCKS, BookingStore
from resource_booking.services.intervals import TimeSlot, day_bounds, utc_day
from resource_booking.services.recommendation_service import SlotRecommender
from resource_booking.services.recurrence_service import (
    RecurrenceEngine,
    RecurrenceRule,
    RuleInput,
    coerce_rule,
    is_unbounded,
    parse_rule,
)

logger = get_logger(__name__)


class BookingPhase(str, Enum):
    VALIDATING = "validating"
    CONFLICT_CHECKING = "conflict_checking"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"
    DONE = "done"


@dataclass
class BookingRequest:
    resource_id: str
    start_time: datetime
    end_time: datetime
    recurrence_rule: Optional[RuleInput] = None


@dataclass
class BookingCreated:
    series: BookingSeries
    instances: list[BookingInstance]

    @property
    def is_infinite(self) -> bool:
        return bool(self.series.is_infinite)


@dataclass
class BookingConflict:
    conflicts: list[Conflict]
    recommended_slots: list[TimeSlot] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Booking conflicts with {len(self.conflicts)} existing booking(s)"


BookingResult = Union[BookingCreated, BookingConflict]


@dataclass
class _ValidatedRequest:
    resource_id: str
    start: datetime
    end: datetime
    rule: Optional[RecurrenceRule]
    windows: list[TimeSlot]

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class BookingService:
    def __init__(
        self,
        store: BookingStore,
        *,
        clock: Clock = utc_now,
        engine: Optional[RecurrenceEngine] = None,
        padding: timedelta = timedelta(days=7),
        recommendation_horizon: timedelta = timedelta(days=90),
        recommendation_step: timedelta = timedelta(hours=1),
        max_recommended_slots: int = 5,
    ):
        self.store = store
        self.clock = clock
        self.engine = engine or RecurrenceEngine(clock=clock)
        self.detector = ConflictDetector(store, self.engine, padding=padding)
        self.calculator = AvailabilityCalculator(store, self.engine)
        self.recommender = SlotRecommender(
            self.detector,
            self.engine,
            clock=clock,
            horizon=recommendation_horizon,
            step=recommendation_step,
        )
        self.max_recommended_slots = max_recommended_slots

    @classmethod
    def from_settings(cls, store: BookingStore, settings: Settings, clock: Clock = utc_now) -> "BookingService":
        return cls(
            store,
            clock=clock,
            engine=RecurrenceEngine(
                horizon=relativedelta(years=settings.UNBOUNDED_HORIZON_YEARS), clock=clock
            ),
            padding=timedelta(days=settings.UNBOUNDED_PADDING_DAYS),
            recommendation_horizon=timedelta(days=settings.RECOMMENDATION_HORIZON_DAYS),
            recommendation_step=timedelta(minutes=settings.RECOMMENDATION_STEP_MINUTES),
            max_recommended_slots=settings.MAX_RECOMMENDED_SLOTS,
        )

    # Creation

    async def create_booking(self, request: BookingRequest) -> BookingResult:
        """
        Create a booking series atomically.

        Returns BookingCreated on success or BookingConflict when the resource
        is taken. Raises InputError subclasses for invalid requests and
        StorageUnavailableError for infrastructure failures.
        """
        with booking_latency.time():
            try:
                result = await self._create(request)
            except InputError:
                record_booking_attempt("invalid")
                raise
            except Exception:
                record_booking_attempt("error")
                raise
        record_booking_attempt("success" if isinstance(result, BookingCreated) else "conflict")
        return result

    async def _create(self, request: BookingRequest) -> BookingResult:
        log = logger.bind(resource_id=request.resource_id)
        log.debug("booking_phase", phase=BookingPhase.VALIDATING.value)
        validated = self._validate(request)

        log.debug("booking_phase", phase=BookingPhase.CONFLICT_CHECKING.value, windows=len(validated.windows))
        await self.store.begin()
        try:
            conflicts = await self.detector.conflicts_for_windows(
                validated.resource_id, validated.windows, locking=COMMIT_LOCKS
            )
            if not conflicts:
                log.debug("booking_phase", phase=BookingPhase.COMMITTING.value)
                series, instances = self._materialize(validated)
                await self.store.add_series(series, instances)
                await self.store.commit()
                log.info(
                    "booking_created",
                    series_id=str(series.id),
                    instances=len(instances),
                    infinite=series.is_infinite,
                    rule=series.recurrence_rule,
                )
                log.debug("booking_phase", phase=BookingPhase.DONE.value)
                return BookingCreated(series=series, instances=instances)

            log.debug("booking_phase", phase=BookingPhase.ROLLING_BACK.value, conflicts=len(conflicts))
            await self.store.rollback()
        except StorageConflictError:
            # A concurrent writer committed an overlapping booking first
            record_storage_race()
            log.warning("booking_race_converted", phase=BookingPhase.ROLLING_BACK.value)
            conflicts = await self.detector.conflicts_for_windows(validated.resource_id, validated.windows)
        except BaseException:
            await self.store.rollback()
            raise

        outcome = await self._conflict_outcome(validated, conflicts)
        log.info(
            "booking_conflict",
            conflicts=len(outcome.conflicts),
            recommendations=len(outcome.recommended_slots),
        )
        log.debug("booking_phase", phase=BookingPhase.DONE.value)
        return outcome

    def _validate(self, request: BookingRequest) -> _ValidatedRequest:
        if not request.resource_id or not request.resource_id.strip():
            raise InputError("resource_id is required")
        start, end = ensure_utc(request.start_time), ensure_utc(request.end_time)
        if start >= end:
            raise InvalidTimeRange("start_time must be before end_time")

        rule = coerce_rule(request.recurrence_rule)
        if start < self.clock():
            raise BookingInPast("Cannot book a slot that starts in the past")

        if rule is None:
            windows = [TimeSlot(start, end)]
        else:
            horizon_end = self.engine.horizon_end()
            if is_unbounded(rule) and start > horizon_end:
                raise EmptyRecurrence(
                    f"Unbounded series must start by the expansion horizon ({horizon_end.isoformat()})"
                )
            duration = end - start
            windows = [TimeSlot(o, o + duration) for o in self.engine.expand(rule, start, end)]
            if not windows:
                raise EmptyRecurrence("Recurrence rule produces no occurrences")
            # Occurrences are ordered, so checking neighbours is enough
            for earlier, later in zip(windows, windows[1:]):
                if earlier.overlaps(later):
                    raise InvalidTimeRange(
                        "Booking is longer than the recurrence step; occurrences would overlap each other"
                    )

        return _ValidatedRequest(request.resource_id, start, end, rule, windows)

    def _materialize(self, validated: _ValidatedRequest) -> tuple[BookingSeries, list[BookingInstance]]:
        now = self.clock()
        rule = validated.rule
        series = BookingSeries(
            id=uuid4(),
            resource_id=validated.resource_id,
            start_time=validated.start,
            end_time=validated.end,
            recurrence_rule=rule.to_rrule_string() if rule else None,
            is_infinite=rule is not None and is_unbounded(rule),
            created_at=now,
            updated_at=now,
        )
        if series.is_infinite:
            return series, []

        instances = [
            BookingInstance(
                id=uuid4(),
                series_id=series.id,
                resource_id=validated.resource_id,
                start_time=window.start,
                end_time=window.end,
                is_exception=False,
                created_at=now,
                updated_at=now,
            )
            for window in validated.windows
        ]
        return series, instances

    async def _conflict_outcome(self, validated: _ValidatedRequest, conflicts: list[Conflict]) -> BookingConflict:
        slots = await self.recommender.next_available_slots(
            validated.resource_id,
            validated.start,
            validated.duration,
            rule=validated.rule,
            max_slots=self.max_recommended_slots,
        )
        return BookingConflict(conflicts=conflicts, recommended_slots=slots)

    # Read-only queries

    async def find_conflicts(
        self,
        resource_id: str,
        start_time: datetime,
        end_time: datetime,
        rule: Optional[RuleInput] = None,
    ) -> list[Conflict]:
        return await self.detector.find_conflicts(resource_id, start_time, end_time, rule)

    async def availability(self, resource_id: str, range_start: datetime, range_end: datetime) -> list[TimeSlot]:
        return await self.calculator.availability(resource_id, range_start, range_end)

    async def next_available_slots(
        self,
        resource_id: str,
        from_time: datetime,
        duration: timedelta,
        rule: Optional[RuleInput] = None,
        max_slots: Optional[int] = None,
    ) -> list[TimeSlot]:
        if max_slots is None:
            max_slots = self.max_recommended_slots
        return await self.recommender.next_available_slots(resource_id, from_time, duration, rule, max_slots)

    async def get_series(self, series_id: UUID) -> tuple[BookingSeries, list[BookingInstance]]:
        series = await self.store.get_series(series_id)
        if series is None:
            raise SeriesNotFound(series_id)
        return series, await self.store.find_instances_by_series(series_id)

    # Cancellation and deletion

    async def cancel_occurrence(self, series_id: UUID, instance_date: Union[date, datetime]) -> BookingInstance:
        """
        Cancel one occurrence of a series, keeping an audit row.

        A materialized instance on that UTC day is flipped to is_exception in
        place. Otherwise, for an unbounded series, an exception row is created
        for the virtual occurrence of that day. Cancelling an already-cancelled
        day returns the existing exception row. No conflict check runs.
        """
        if isinstance(instance_date, datetime):
            day = utc_day(ensure_utc(instance_date))
        else:
            day = instance_date
        day_start, day_end = day_bounds(day)

        await self.store.begin()
        try:
            series = await self.store.get_series(series_id)
            if series is None:
                raise SeriesNotFound(series_id)
            await self.store.lock_resource(series.resource_id)

            instance = await self.store.find_instance_on_day(series.id, day_start, day_end, is_exception=False)
            if instance is not None:
                instance = await self.store.mark_exception(instance)
                kind = "materialized"
            else:
                existing = await self.store.find_instance_on_day(series.id, day_start, day_end, is_exception=True)
                if existing is not None:
                    await self.store.commit()
                    record_cancellation("repeat")
                    return existing
                instance = self._virtual_exception(series, day, day_start, day_end)
                await self.store.add_instance(instance)
                kind = "virtual"

            await self.store.commit()
        except BaseException:
            await self.store.rollback()
            raise

        record_cancellation(kind)
        logger.info(
            "occurrence_cancelled",
            series_id=str(series.id),
            resource_id=series.resource_id,
            instance_id=str(instance.id),
            start_time=instance.start_time.isoformat(),
            kind=kind,
        )
        return instance

    def _virtual_exception(
        self, series: BookingSeries, day: date, day_start: datetime, day_end: datetime
    ) -> BookingInstance:
        if not series.is_infinite:
            raise OccurrenceNotFound(series.id, day)
        starts = self.engine.occurrences_between(
            parse_rule(series.recurrence_rule), series.start_time, day_start, day_end
        )
        if not starts:
            raise OccurrenceNotFound(series.id, day)
        now = self.clock()
        return BookingInstance(
            id=uuid4(),
            series_id=series.id,
            resource_id=series.resource_id,
            start_time=starts[0],
            end_time=starts[0] + series.duration,
            is_exception=True,
            created_at=now,
            updated_at=now,
        )

    async def delete_series(self, series_id: UUID) -> BookingSeries:
        """Delete a series together with all of its instances."""
        await self.store.begin()
        try:
            series = await self.store.get_series(series_id)
            if series is None:
                raise SeriesNotFound(series_id)
            await self.store.lock_resource(series.resource_id)
            await self.store.delete_series(series_id)
            await self.store.commit()
        except BaseException:
            await self.store.rollback()
            raise

        logger.info("series_deleted", series_id=str(series_id), resource_id=series.resource_id)
        return series

"""
Tests for booking creation, including concurrent creation on one resource.
"""

import asyncio
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from resource_booking.core.exceptions import (
    BookingInPast,
    EmptyRecurrence,
    InputError,
    InvalidRecurrenceRule,
    InvalidTimeRange,
    SeriesNotFound,
)
from resource_booking.infrastructure.memory_store import InMemoryBookingStore
from resource_booking.services.booking_service import BookingConflict, BookingCreated
from resource_booking.services.intervals import TimeSlot, overlaps

from conftest import NOW, TOMORROW, at, book, book_ok


class StaleReadStore(InMemoryBookingStore):
    """Yields to the event loop after each overlap read, so a concurrent writer can commit in between."""

    async def find_overlapping_instances(self, *args, **kwargs):
        rows = await super().find_overlapping_instances(*args, **kwargs)
        await asyncio.sleep(0)
        return rows


def assert_no_overlaps(memory_db, resource_id):
    live = sorted(
        (i for i in memory_db.instances.values() if i.resource_id == resource_id and not i.is_exception),
        key=lambda i: i.start_time,
    )
    for first, second in zip(live, live[1:]):
        assert not overlaps(first.start_time, first.end_time, second.start_time, second.end_time)


# Creation


@pytest.mark.asyncio
async def test_single_booking_materializes_one_instance(service, memory_db):
    result = await book_ok(service, "R1", at(8, 9))

    assert result.series.recurrence_rule is None
    assert not result.is_infinite
    assert len(result.instances) == 1
    instance = result.instances[0]
    assert (instance.start_time, instance.end_time) == (at(8, 9), at(8, 10))
    assert instance.series_id == result.series.id
    assert not instance.is_exception
    assert result.series.id in memory_db.series


@pytest.mark.asyncio
async def test_bounded_rule_materializes_every_occurrence(service):
    result = await book_ok(service, "R1", at(8, 9), rule="RRULE:FREQ=WEEKLY;COUNT=10")

    assert result.series.recurrence_rule == "RRULE:FREQ=WEEKLY;COUNT=10"
    assert len(result.instances) == 10
    assert all(i.duration == timedelta(hours=1) for i in result.instances)
    assert result.instances[-1].start_time == at(8, 9) + timedelta(weeks=9)


@pytest.mark.asyncio
async def test_until_rule_materializes_through_until(service):
    result = await book_ok(service, "R1", at(8, 9), rule="RRULE:FREQ=DAILY;UNTIL=20300110T090000Z")
    assert [i.start_time for i in result.instances] == [at(8, 9), at(9, 9), at(10, 9)]


@pytest.mark.asyncio
async def test_unbounded_rule_materializes_nothing(service):
    result = await book_ok(service, "R1", at(8, 14), rule="RRULE:FREQ=WEEKLY")

    assert result.is_infinite
    assert result.instances == []
    assert result.series.recurrence_rule == "RRULE:FREQ=WEEKLY"


@pytest.mark.asyncio
async def test_rule_text_is_stored_canonical(service):
    result = await book_ok(service, "R1", at(8, 9), rule="freq=daily;count=2;interval=2")
    assert result.series.recurrence_rule == "RRULE:FREQ=DAILY;INTERVAL=2;COUNT=2"


@pytest.mark.asyncio
async def test_back_to_back_bookings_allowed(service):
    await book_ok(service, "R1", at(8, 9))
    await book_ok(service, "R1", at(8, 10))
    await book_ok(service, "R1", at(8, 8))


@pytest.mark.asyncio
async def test_booking_starting_now_is_allowed(service):
    await book_ok(service, "R1", NOW)


# Validation


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start,end,rule,error",
    [
        (at(8, 10), at(8, 9), None, InvalidTimeRange),
        (at(8, 10), at(8, 10), None, InvalidTimeRange),
        (NOW - timedelta(minutes=1), NOW + timedelta(hours=1), None, BookingInPast),
        (at(8, 9), at(8, 10), "RRULE:FREQ=DAILY;COUNT=0", EmptyRecurrence),
        (at(8, 9), at(8, 10), "RRULE:FREQ=DAILY;UNTIL=20300101T000000Z", EmptyRecurrence),
        (at(8, 9), at(8, 10), "RRULE:INTERVAL=2", InvalidRecurrenceRule),
    ],
)
async def test_invalid_requests_rejected(service, memory_db, start, end, rule, error):
    with pytest.raises(error):
        await book(service, "R1", start, end, rule=rule)
    assert memory_db.series == {}


@pytest.mark.asyncio
async def test_blank_resource_rejected(service):
    with pytest.raises(InputError):
        await book(service, "  ", at(8, 9))


@pytest.mark.asyncio
@pytest.mark.parametrize("rule", ["RRULE:FREQ=DAILY;COUNT=3", "RRULE:FREQ=DAILY"])
async def test_window_longer_than_step_rejected(service, memory_db, rule):
    # 27h window repeated daily would overlap its own next occurrence
    with pytest.raises(InvalidTimeRange):
        await book(service, "R1", at(8, 9), at(9, 12), rule=rule)
    assert memory_db.series == {}
    assert memory_db.instances == {}


@pytest.mark.asyncio
async def test_window_equal_to_step_allowed(service):
    result = await book_ok(service, "R1", at(8, 9), at(9, 9), rule="RRULE:FREQ=DAILY;COUNT=3")
    assert [i.start_time for i in result.instances] == [at(8, 9), at(9, 9), at(10, 9)]


@pytest.mark.asyncio
async def test_unbounded_series_past_horizon_rejected(service, memory_db):
    with pytest.raises(EmptyRecurrence, match="expansion horizon"):
        await book(service, "R1", at(8, 9, year=2033), rule="RRULE:FREQ=WEEKLY")
    assert memory_db.series == {}


@pytest.mark.asyncio
async def test_bounded_series_past_horizon_allowed(service):
    result = await book_ok(service, "R1", at(8, 9, year=2033), rule="RRULE:FREQ=WEEKLY;COUNT=2")
    assert len(result.instances) == 2


@pytest.mark.asyncio
async def test_rejected_request_does_not_hold_the_lock(service, memory_db):
    with pytest.raises(InvalidTimeRange):
        await book(service, "R1", at(8, 10), at(8, 9))
    assert not memory_db.resource_locks["R1"].locked()


# Conflicts


@pytest.mark.asyncio
async def test_conflict_outcome_lists_bookings_and_alternatives(service, memory_db):
    first = await book_ok(service, "R1", at(8, 9))

    result = await book(service, "R1", at(8, 9, 30), at(8, 10, 30))

    assert isinstance(result, BookingConflict)
    assert [c.booking_id for c in result.conflicts] == [first.instances[0].id]
    assert result.message == "Booking conflicts with 1 existing booking(s)"
    assert 1 <= len(result.recommended_slots) <= 5
    assert result.recommended_slots[0].start >= at(8, 10)
    assert len(memory_db.series) == 1
    assert not memory_db.resource_locks["R1"].locked()


@pytest.mark.asyncio
async def test_recommended_slots_are_free_and_not_in_the_past(service):
    await book_ok(service, "R1", at(8, 9), rule="RRULE:FREQ=DAILY;COUNT=5")

    result = await book(service, "R1", at(8, 9), rule="RRULE:FREQ=WEEKLY;COUNT=3")

    assert isinstance(result, BookingConflict)
    assert len(result.recommended_slots) <= 5
    for slot in result.recommended_slots:
        assert slot.start >= NOW
        assert await service.find_conflicts("R1", slot.start, slot.end) == []


@pytest.mark.asyncio
async def test_recurring_request_conflicting_with_unbounded_series(service):
    await book_ok(service, "R1", at(8, 14), rule="RRULE:FREQ=WEEKLY")

    result = await book(service, "R1", at(1, 14, 30, month=2), rule="RRULE:FREQ=DAILY;COUNT=10")

    assert isinstance(result, BookingConflict)
    # Feb 5 is the only Tuesday in Feb 1-10
    assert [c.start_time for c in result.conflicts] == [at(5, 14, month=2)]
    assert result.conflicts[0].virtual


@pytest.mark.asyncio
async def test_unbounded_request_conflicting_far_in_future(service):
    await book_ok(service, "R1", at(4, 14, month=6), rule="RRULE:FREQ=DAILY;COUNT=1")

    result = await book(service, "R1", at(8, 14), rule="RRULE:FREQ=WEEKLY")

    assert isinstance(result, BookingConflict)
    assert [c.start_time for c in result.conflicts] == [at(4, 14, month=6)]


# Concurrency


@pytest.mark.asyncio
async def test_concurrent_identical_requests_one_wins(make_service, memory_db):
    first, second = make_service(), make_service()

    results = await asyncio.gather(
        book(first, "R1", at(8, 9)),
        book(second, "R1", at(8, 9)),
    )

    assert sorted(type(r).__name__ for r in results) == ["BookingConflict", "BookingCreated"]
    assert len(memory_db.instances) == 1


@pytest.mark.asyncio
async def test_concurrent_creators_with_stale_reads_are_serialized(make_service, memory_db):
    services = [make_service(StaleReadStore) for _ in range(10)]

    results = await asyncio.gather(
        *(book(s, "R1", at(8, 9) + timedelta(minutes=10 * n)) for n, s in enumerate(services))
    )

    created = [r for r in results if isinstance(r, BookingCreated)]
    assert 1 <= len(created) < 10
    assert all(isinstance(r, (BookingCreated, BookingConflict)) for r in results)
    assert_no_overlaps(memory_db, "R1")


@pytest.mark.asyncio
async def test_commit_time_race_becomes_conflict(make_service, memory_db):
    # Without the writer lock both read an empty resource; the commit-time
    # exclusion check must turn the loser into a conflict
    first = make_service(StaleReadStore, serialize_writers=False)
    second = make_service(StaleReadStore, serialize_writers=False)
    races_before = REGISTRY.get_sample_value("booking_storage_races_total") or 0

    results = await asyncio.gather(
        book(first, "R1", at(8, 9)),
        book(second, "R1", at(8, 9, 30), at(8, 10, 30)),
    )

    created = [r for r in results if isinstance(r, BookingCreated)]
    conflicts = [r for r in results if isinstance(r, BookingConflict)]
    assert len(created) == 1
    assert len(conflicts) == 1
    assert [c.booking_id for c in conflicts[0].conflicts] == [created[0].instances[0].id]
    assert REGISTRY.get_sample_value("booking_storage_races_total") == races_before + 1
    assert len(memory_db.instances) == 1


@pytest.mark.asyncio
async def test_different_resources_do_not_block(make_service, memory_db):
    results = await asyncio.gather(
        *(book(make_service(StaleReadStore), f"R{n}", at(8, 9)) for n in range(5))
    )
    assert all(isinstance(r, BookingCreated) for r in results)
    assert len(memory_db.instances) == 5


# Reads and deletion


@pytest.mark.asyncio
async def test_get_series_returns_instances(service):
    created = await book_ok(service, "R1", at(8, 9), rule="RRULE:FREQ=DAILY;COUNT=3")

    series, instances = await service.get_series(created.series.id)

    assert series.id == created.series.id
    assert [i.start_time for i in instances] == [at(8, 9), at(9, 9), at(10, 9)]


@pytest.mark.asyncio
async def test_get_unknown_series(service):
    from uuid import uuid4

    with pytest.raises(SeriesNotFound):
        await service.get_series(uuid4())


@pytest.mark.asyncio
async def test_delete_series_frees_the_slot(service, memory_db):
    created = await book_ok(service, "R1", at(8, 9), rule="RRULE:FREQ=DAILY;COUNT=3")

    deleted = await service.delete_series(created.series.id)

    assert deleted.id == created.series.id
    assert memory_db.series == {}
    assert memory_db.instances == {}
    await book_ok(service, "R1", at(9, 9))


@pytest.mark.asyncio
async def test_delete_unknown_series(service):
    from uuid import uuid4

    with pytest.raises(SeriesNotFound):
        await service.delete_series(uuid4())


# End to end


@pytest.mark.asyncio
async def test_end_to_end_scenario(service):
    single = await book_ok(service, "R1", at(8, 9))

    clash = await book(service, "R1", at(8, 9, 30), at(8, 10, 30))
    assert isinstance(clash, BookingConflict)
    assert [c.booking_id for c in clash.conflicts] == [single.instances[0].id]
    assert clash.recommended_slots
    assert clash.recommended_slots[0].start >= at(8, 10)

    weekly = await book_ok(service, "R1", TOMORROW.replace(hour=14), rule="RRULE:FREQ=WEEKLY")
    assert weekly.is_infinite
    assert weekly.instances == []

    free = await service.availability("R1", NOW, NOW + timedelta(days=8))
    assert free == [
        TimeSlot(NOW, at(8, 9)),
        TimeSlot(at(8, 10), at(8, 14)),
        TimeSlot(at(8, 15), at(15, 8)),
    ]

"""
Tests for free-slot computation.
"""

import pytest

from resource_booking.core.exceptions import InvalidRange
from resource_booking.services.availability_service import AvailabilityCalculator
from resource_booking.services.intervals import TimeSlot

from conftest import at, book_ok


@pytest.fixture
def calculator(store, engine) -> AvailabilityCalculator:
    return AvailabilityCalculator(store, engine)


@pytest.mark.asyncio
async def test_empty_resource_is_one_free_interval(calculator):
    assert await calculator.availability("R1", at(8, 0), at(9, 0)) == [TimeSlot(at(8, 0), at(9, 0))]


@pytest.mark.asyncio
async def test_one_inner_busy_slot_gives_two_gaps(service, calculator):
    await book_ok(service, "R1", at(8, 9))

    free = await calculator.availability("R1", at(8, 0), at(9, 0))

    assert free == [TimeSlot(at(8, 0), at(8, 9)), TimeSlot(at(8, 10), at(9, 0))]


@pytest.mark.asyncio
async def test_booking_on_range_edge(service, calculator):
    await book_ok(service, "R1", at(8, 9))

    assert await calculator.availability("R1", at(8, 9), at(8, 12)) == [TimeSlot(at(8, 10), at(8, 12))]


@pytest.mark.asyncio
async def test_other_resources_ignored(service, calculator):
    await book_ok(service, "R2", at(8, 9))
    assert await calculator.availability("R1", at(8, 0), at(9, 0)) == [TimeSlot(at(8, 0), at(9, 0))]


@pytest.mark.asyncio
async def test_unbounded_series_occurrences_are_busy(service, calculator):
    await book_ok(service, "R1", at(8, 14), rule="RRULE:FREQ=DAILY")

    free = await calculator.availability("R1", at(10, 12), at(11, 16))

    assert free == [
        TimeSlot(at(10, 12), at(10, 14)),
        TimeSlot(at(10, 15), at(11, 14)),
        TimeSlot(at(11, 15), at(11, 16)),
    ]


@pytest.mark.asyncio
async def test_occurrence_crossing_range_start_is_clipped(service, calculator):
    await book_ok(service, "R1", at(7, 23), at(8, 1), rule="RRULE:FREQ=DAILY")

    free = await calculator.availability("R1", at(9, 0), at(9, 12))

    assert free == [TimeSlot(at(9, 1), at(9, 12))]


@pytest.mark.asyncio
async def test_duplicate_busy_slots_merged(service, store, engine):
    await book_ok(service, "R1", at(8, 9))
    calculator = AvailabilityCalculator(store, engine)

    busy = await calculator.busy_slots("R1", at(8, 0), at(9, 0))

    assert busy == [TimeSlot(at(8, 9), at(8, 10))]


@pytest.mark.asyncio
async def test_cancelled_occurrence_frees_time(service, calculator):
    weekly = await book_ok(service, "R1", at(8, 14), rule="RRULE:FREQ=WEEKLY")
    await service.cancel_occurrence(weekly.series.id, at(15, 0).date())

    assert await calculator.availability("R1", at(15, 0), at(16, 0)) == [TimeSlot(at(15, 0), at(16, 0))]


@pytest.mark.asyncio
async def test_cancelled_materialized_instance_frees_time(service, calculator):
    series = await book_ok(service, "R1", at(8, 9), rule="RRULE:FREQ=DAILY;COUNT=3")
    await service.cancel_occurrence(series.series.id, at(9, 0).date())

    free = await calculator.availability("R1", at(9, 0), at(10, 0))

    assert free == [TimeSlot(at(9, 0), at(10, 0))]


@pytest.mark.asyncio
@pytest.mark.parametrize("start,end", [(at(9, 0), at(8, 0)), (at(8, 0), at(8, 0))])
async def test_invalid_range(calculator, start, end):
    with pytest.raises(InvalidRange):
        await calculator.availability("R1", start, end)

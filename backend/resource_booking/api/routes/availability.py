"""
Availability endpoints with Redis caching on the free-slot query.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from resource_booking.api.dependencies import get_booking_service
from resource_booking.core.clock import ensure_utc
from resource_booking.core.logging import get_logger
from resource_booking.schemas.availability import AvailabilityResponse, NextSlotsResponse
from resource_booking.schemas.booking import TimeSlotResponse
from resource_booking.services.booking_service import BookingService
from resource_booking.services.cache_service import (
    get_availability_generation,
    get_cached_availability,
    set_cached_availability,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/availability", tags=["Availability"])


@router.get("/", response_model=AvailabilityResponse)
async def get_availability(
    resource_id: str = Query(..., min_length=1, max_length=255),
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    service: BookingService = Depends(get_booking_service),
):
    """
    Free intervals of a resource within [start_date, end_date).
    Results are cached in Redis under the resource's cache generation, read
    before the store is queried; any booking change bumps the generation.
    """
    start_date, end_date = ensure_utc(start_date), ensure_utc(end_date)

    generation = await get_availability_generation(resource_id)
    cached = await get_cached_availability(resource_id, generation, start_date, end_date)
    if cached:
        logger.info("availability_cache_hit", resource_id=resource_id)
        cached["cached"] = True
        return AvailabilityResponse(**cached)

    free = await service.availability(resource_id, start_date, end_date)
    response = AvailabilityResponse(
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        available_slots=[TimeSlotResponse(start_time=s.start, end_time=s.end) for s in free],
    )

    await set_cached_availability(
        resource_id, generation, start_date, end_date, response.model_dump(mode="json")
    )
    return response


@router.get("/next-slots", response_model=NextSlotsResponse)
async def get_next_slots(
    resource_id: str = Query(..., min_length=1, max_length=255),
    from_time: datetime = Query(...),
    duration_minutes: int = Query(..., gt=0, le=7 * 24 * 60),
    recurrence_rule: Optional[str] = Query(None, max_length=500),
    max_slots: int = Query(5, ge=0, le=50),
    service: BookingService = Depends(get_booking_service),
):
    """Next conflict-free windows of the given length, earliest first. Never in the past."""
    slots = await service.next_available_slots(
        resource_id,
        from_time,
        timedelta(minutes=duration_minutes),
        rule=recurrence_rule,
        max_slots=max_slots,
    )
    return NextSlotsResponse(
        resource_id=resource_id,
        duration_minutes=duration_minutes,
        slots=[TimeSlotResponse(start_time=s.start, end_time=s.end) for s in slots],
    )

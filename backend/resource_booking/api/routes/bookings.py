"""
Booking endpoints: create (conflict-checked under locks), preview conflicts,
inspect, delete, and cancel single occurrences.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from resource_booking.schemas.booking import (
    BookingConflictResponse,
    BookingCreate,
    BookingResponse,
    CancelOccurrenceRequest,
    ConflictCheckResponse,
    ConflictInfo,
    InstanceResponse,
    SeriesDeleteResponse,
    SeriesDetailResponse,
    SeriesResponse,
    TimeSlotResponse,
)
from resource_booking.services.booking_service import BookingConflict, BookingRequest, BookingService
from resource_booking.services.cache_service import invalidate_availability_cache
from resource_booking.api.dependencies import get_booking_service

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post(
    "/",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": BookingConflictResponse}},
)
async def create_booking(
    booking_data: BookingCreate,
    service: BookingService = Depends(get_booking_service),
):
    """
    Book a resource for a single window or a recurring series.

    The conflict check and the insert run in one transaction under a
    per-resource lock. On conflict the response is 409 with the conflicting
    bookings and up to 5 alternative slots.
    """
    result = await service.create_booking(
        BookingRequest(
            resource_id=booking_data.resource_id,
            start_time=booking_data.start_time,
            end_time=booking_data.end_time,
            recurrence_rule=booking_data.recurrence_rule,
        )
    )

    if isinstance(result, BookingConflict):
        body = BookingConflictResponse(
            message=result.message,
            resource_id=booking_data.resource_id,
            conflicts=[ConflictInfo.model_validate(c) for c in result.conflicts],
            next_available_slots=[
                TimeSlotResponse(start_time=s.start, end_time=s.end) for s in result.recommended_slots
            ],
        )
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump(mode="json"))

    await invalidate_availability_cache(booking_data.resource_id)
    series = result.series
    return BookingResponse(
        booking_id=series.id,
        resource_id=series.resource_id,
        start_time=series.start_time,
        end_time=series.end_time,
        recurrence_rule=series.recurrence_rule,
        is_infinite=result.is_infinite,
        instance_count=len(result.instances),
        instances=[InstanceResponse.model_validate(i) for i in result.instances],
    )


@router.post("/conflicts", response_model=ConflictCheckResponse)
async def check_conflicts(
    booking_data: BookingCreate,
    service: BookingService = Depends(get_booking_service),
):
    """Preview conflicts for a candidate booking without reserving anything."""
    conflicts = await service.find_conflicts(
        booking_data.resource_id,
        booking_data.start_time,
        booking_data.end_time,
        booking_data.recurrence_rule,
    )
    return ConflictCheckResponse(
        resource_id=booking_data.resource_id,
        has_conflict=bool(conflicts),
        conflicts=[ConflictInfo.model_validate(c) for c in conflicts],
    )


@router.get("/{series_id}", response_model=SeriesDetailResponse)
async def get_booking(
    series_id: UUID,
    service: BookingService = Depends(get_booking_service),
):
    """Get a booking series with its materialized instances and exceptions."""
    series, instances = await service.get_series(series_id)
    return SeriesDetailResponse(
        series=SeriesResponse.model_validate(series),
        instances=[InstanceResponse.model_validate(i) for i in instances],
    )


@router.delete("/{series_id}", response_model=SeriesDeleteResponse)
async def delete_booking(
    series_id: UUID,
    service: BookingService = Depends(get_booking_service),
):
    """Delete a booking series and all of its instances."""
    series = await service.delete_series(series_id)
    await invalidate_availability_cache(series.resource_id)
    return SeriesDeleteResponse(message="Booking deleted successfully", booking_id=series.id)


@router.post(
    "/{series_id}/exceptions",
    response_model=InstanceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def cancel_occurrence(
    series_id: UUID,
    payload: CancelOccurrenceRequest,
    service: BookingService = Depends(get_booking_service),
):
    """Cancel the occurrence of a series on the given (UTC) day."""
    instance = await service.cancel_occurrence(series_id, payload.instance_date)
    await invalidate_availability_cache(instance.resource_id)
    return instance

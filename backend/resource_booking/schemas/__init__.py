from resource_booking.schemas.booking import (
    BookingCreate,
    BookingResponse,
    BookingConflictResponse,
    CancelOccurrenceRequest,
    ConflictCheckResponse,
    ConflictInfo,
    InstanceResponse,
    SeriesDeleteResponse,
    SeriesDetailResponse,
    SeriesResponse,
    TimeSlotResponse,
)
from resource_booking.schemas.availability import AvailabilityResponse, NextSlotsResponse

__all__ = [
    "BookingCreate", "BookingResponse", "BookingConflictResponse",
    "CancelOccurrenceRequest", "ConflictCheckResponse", "ConflictInfo",
    "InstanceResponse", "SeriesDeleteResponse", "SeriesDetailResponse",
    "SeriesResponse", "TimeSlotResponse",
    "AvailabilityResponse", "NextSlotsResponse",
]

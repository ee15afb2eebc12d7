"""
Pydantic schemas for availability and slot recommendation responses.
"""

from datetime import datetime

from pydantic import BaseModel

from resource_booking.schemas.booking import TimeSlotResponse


class AvailabilityResponse(BaseModel):
    resource_id: str
    start_date: datetime
    end_date: datetime
    available_slots: list[TimeSlotResponse]
    cached: bool = False


class NextSlotsResponse(BaseModel):
    resource_id: str
    duration_minutes: int
    slots: list[TimeSlotResponse]

"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    resource_id: str = Field(..., min_length=1, max_length=255)
    start_time: datetime
    end_time: datetime
    recurrence_rule: Optional[str] = Field(
        None,
        max_length=500,
        description="RFC 5545 rule, e.g. RRULE:FREQ=WEEKLY;COUNT=10",
    )


class InstanceResponse(BaseModel):
    id: UUID
    series_id: UUID
    resource_id: str
    start_time: datetime
    end_time: datetime
    is_exception: bool

    model_config = {"from_attributes": True}


class SeriesResponse(BaseModel):
    id: UUID
    resource_id: str
    start_time: datetime
    end_time: datetime
    recurrence_rule: Optional[str]
    is_infinite: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    booking_id: UUID
    resource_id: str
    start_time: datetime
    end_time: datetime
    recurrence_rule: Optional[str]
    is_infinite: bool
    instance_count: int
    instances: list[InstanceResponse]


class SeriesDetailResponse(BaseModel):
    series: SeriesResponse
    instances: list[InstanceResponse]


class ConflictInfo(BaseModel):
    booking_id: UUID
    series_id: Optional[UUID]
    start_time: datetime
    end_time: datetime
    virtual: bool = False

    model_config = {"from_attributes": True}


class TimeSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime


class BookingConflictResponse(BaseModel):
    has_conflict: bool = True
    message: str
    resource_id: str
    conflicts: list[ConflictInfo]
    next_available_slots: list[TimeSlotResponse]


class ConflictCheckResponse(BaseModel):
    resource_id: str
    has_conflict: bool
    conflicts: list[ConflictInfo]


class CancelOccurrenceRequest(BaseModel):
    instance_date: Union[datetime, date]


class SeriesDeleteResponse(BaseModel):
    message: str
    booking_id: UUID

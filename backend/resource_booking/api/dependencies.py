"""
FastAPI dependencies wiring the booking core to a request.
"""

from fastapi import Depends

from resource_booking.core.clock import Clock, utc_now
from resource_booking.core.config import get_settings
from resource_booking.services.booking_service import BookingService
from resource_booking.services.interfaces.store import BookingStore
from resource_booking.services.store_factory import get_store


def get_clock() -> Clock:
    return utc_now


async def get_booking_service(
    store: BookingStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> BookingService:
    return BookingService.from_settings(store, get_settings(), clock=clock)

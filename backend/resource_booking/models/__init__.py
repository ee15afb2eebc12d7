from resource_booking.models.series import BookingSeries
from resource_booking.models.instance import BookingInstance

__all__ = ["BookingSeries", "BookingInstance"]

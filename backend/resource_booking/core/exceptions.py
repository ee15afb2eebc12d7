"""
Error taxonomy for the booking core.

  InputError               malformed request, rejected before any transaction
  NotFoundError            unknown series / occurrence
  StorageConflictError     exclusion violation at commit; converted to a
                           conflict result by the booking service
  StorageUnavailableError  connection loss, lock timeout, serialization
                           failure; surfaced to the caller's retry policy

A conflict with an existing booking is not an error: it is returned as a
BookingConflict result (see services.booking_service).
"""


class BookingError(Exception):
    """Base class for all booking core errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InputError(BookingError):
    pass


class InvalidTimeRange(InputError):
    pass


class InvalidRange(InputError):
    pass


class InvalidRecurrenceRule(InputError):
    pass


class BookingInPast(InputError):
    pass


class EmptyRecurrence(InputError):
    pass


class NotFoundError(BookingError):
    pass


class SeriesNotFound(NotFoundError):
    def __init__(self, series_id):
        super().__init__(f"Booking series {series_id} not found")
        self.series_id = series_id


class OccurrenceNotFound(NotFoundError):
    def __init__(self, series_id, instance_date):
        super().__init__(f"Series {series_id} has no occurrence on {instance_date}")
        self.series_id = series_id
        self.instance_date = instance_date


class StorageConflictError(BookingError):
    """Raised by a store when its range-exclusion guarantee rejects a write."""


class StorageUnavailableError(BookingError):
    """Raised by a store for transient infrastructure failures."""

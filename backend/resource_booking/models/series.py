"""
BookingSeries: one booking request as made by a caller.

Key design decisions:
- start_time/end_time describe the template (first) occurrence
- recurrence_rule is stored in canonical RRULE text; NULL means a single booking
- is_infinite is derived from the parsed rule at creation so unbounded series
  can be found with an indexed boolean instead of matching on the rule text
- Series are never mutated after creation (except timestamps)
"""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, String, Text, Uuid, text

from resource_booking.db.base import Base, TimestampMixin


class BookingSeries(Base, TimestampMixin):
    __tablename__ = "booking_series"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id = Column(String(255), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    recurrence_rule = Column(Text, nullable=True)
    is_infinite = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_series_time_order"),
        Index("ix_booking_series_time_range", "resource_id", "start_time", "end_time"),
        # Only unbounded series are scanned by resource on every conflict check
        Index(
            "ix_booking_series_infinite",
            "resource_id",
            postgresql_where=text("is_infinite"),
        ),
    )

    @property
    def duration(self):
        return self.end_time - self.start_time

    def __repr__(self) -> str:
        return (
            f"<BookingSeries(id={self.id}, resource={self.resource_id}, "
            f"start={self.start_time}, rule={self.recurrence_rule})>"
        )

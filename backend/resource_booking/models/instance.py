"""
BookingInstance: one concrete occurrence of a resource reservation.

Key design decisions:
- resource_id is denormalized from the series for range queries
- is_exception marks a cancelled occurrence without deleting the audit row
- ON DELETE CASCADE from booking_series removes instances with their series
- No two non-exception rows of a resource may overlap. Enforced in the
  application under locks, and by a GiST exclusion constraint as the last line
  of defence (PostgreSQL only, needs btree_gist)
"""

import uuid

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Uuid,
    event,
    text,
)

from resource_booking.db.base import Base, TimestampMixin

EXCLUSION_CONSTRAINT_NAME = "no_overlapping_bookings"


class BookingInstance(Base, TimestampMixin):
    __tablename__ = "booking_instance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    series_id = Column(
        Uuid, ForeignKey("booking_series.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_id = Column(String(255), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    is_exception = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_instance_time_order"),
        Index("ix_booking_instance_time_range", "resource_id", "start_time", "end_time"),
        Index(
            "ix_booking_instance_exceptions",
            "series_id",
            "start_time",
            postgresql_where=text("is_exception"),
        ),
    )

    @property
    def duration(self):
        return self.end_time - self.start_time

    def __repr__(self) -> str:
        return (
            f"<BookingInstance(id={self.id}, series={self.series_id}, "
            f"start={self.start_time}, end={self.end_time}, exception={self.is_exception})>"
        )


# Half-open ranges: a booking ending at 10:00 may sit next to one starting at 10:00.
event.listen(
    Base.metadata,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    BookingInstance.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE booking_instance ADD CONSTRAINT {EXCLUSION_CONSTRAINT_NAME} "
        "EXCLUDE USING gist (resource_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (is_exception = false)"
    ).execute_if(dialect="postgresql"),
)

"""Booking tables: series, instances, range exclusion constraint.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Needed for "resource_id WITH =" inside a GiST index
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "booking_series",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("resource_id", sa.String(255), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recurrence_rule", sa.Text(), nullable=True),
        sa.Column("is_infinite", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("end_time > start_time", name="check_series_time_order"),
    )
    op.create_index("ix_booking_series_resource_id", "booking_series", ["resource_id"])
    op.create_index(
        "ix_booking_series_time_range", "booking_series", ["resource_id", "start_time", "end_time"]
    )
    # Unbounded series are re-expanded on every conflict check of their resource
    op.create_index(
        "ix_booking_series_infinite",
        "booking_series",
        ["resource_id"],
        postgresql_where=sa.text("is_infinite"),
    )

    op.create_table(
        "booking_instance",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "series_id",
            sa.Uuid(),
            sa.ForeignKey("booking_series.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("resource_id", sa.String(255), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_exception", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("end_time > start_time", name="check_instance_time_order"),
    )
    op.create_index("ix_booking_instance_series_id", "booking_instance", ["series_id"])
    op.create_index("ix_booking_instance_resource_id", "booking_instance", ["resource_id"])
    # Covers the overlap query: resource_id = ? AND start_time < ? AND end_time > ?
    op.create_index(
        "ix_booking_instance_time_range",
        "booking_instance",
        ["resource_id", "start_time", "end_time"],
    )
    op.create_index(
        "ix_booking_instance_exceptions",
        "booking_instance",
        ["series_id", "start_time"],
        postgresql_where=sa.text("is_exception"),
    )

    # EXCLUSION CONSTRAINT: the database-level guarantee against double booking.
    # Half-open ranges, so back-to-back bookings are allowed.
    # Cancelled occurrences (is_exception) no longer hold the resource.
    op.execute(
        "ALTER TABLE booking_instance ADD CONSTRAINT no_overlapping_bookings "
        "EXCLUDE USING gist (resource_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (is_exception = false)"
    )


def downgrade() -> None:
    op.drop_table("booking_instance")
    op.drop_table("booking_series")

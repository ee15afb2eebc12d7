"""
PostgreSQL booking store on an AsyncSession.

Locking:
- lock_resource: pg_advisory_xact_lock(hashtext(resource_id)). Row locks
  cannot cover a range that has no rows yet, so writers on one resource are
  serialised with a transaction-scoped advisory lock instead. Released
  automatically at COMMIT/ROLLBACK.
- LockMode.UPDATE / SHARE map to SELECT ... FOR UPDATE / FOR SHARE.

Error translation:
- exclusion / unique violations (SQLSTATE 23P01, 23505) -> StorageConflictError
- connection loss, lock/statement timeouts, serialization failures and pool
  timeouts -> StorageUnavailableError
Anything else propagates unchanged.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from resource_booking.core.exceptions import StorageConflictError, StorageUnavailableError
from resource_booking.core.logging import get_logger
from resource_booking.models import BookingInstance, BookingSeries
from resource_booking.services.interfaces.store import BookingStore, LockMode

logger = get_logger(__name__)

EXCLUSION_VIOLATION = "23P01"
UNIQUE_VIOLATION = "23505"

# connection exception, transaction rollback, insufficient resources,
# object not in prerequisite state (lock_timeout), operator intervention
TRANSIENT_SQLSTATE_CLASSES = {"08", "40", "53", "55", "57"}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def _is_exclusion_violation(exc: IntegrityError) -> bool:
    code = _sqlstate(exc)
    if code is not None:
        return code in (EXCLUSION_VIOLATION, UNIQUE_VIOLATION)
    message = str(exc).lower()
    return "exclusion constraint" in message or "duplicate key" in message


def _is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError)):
        return True
    code = _sqlstate(exc)
    return code is not None and code[:2] in TRANSIENT_SQLSTATE_CLASSES


def _apply_lock(statement, lock: LockMode):
    if lock is LockMode.UPDATE:
        return statement.with_for_update()
    if lock is LockMode.SHARE:
        return statement.with_for_update(read=True)
    return statement


class SqlAlchemyBookingStore(BookingStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _translate_errors(self):
        try:
            yield
        except IntegrityError as e:
            await self._safe_rollback()
            if _is_exclusion_violation(e):
                raise StorageConflictError(
                    "Booking conflicts with existing booking (database constraint violation)"
                ) from e
            raise
        except DBAPIError as e:
            if not _is_transient(e):
                raise
            await self._safe_rollback()
            logger.error("storage_unavailable", sqlstate=_sqlstate(e), error=str(e.orig))
            raise StorageUnavailableError("Storage temporarily unavailable") from e
        except (PoolTimeoutError, asyncio.TimeoutError) as e:
            logger.error("storage_pool_timeout", error=str(e))
            raise StorageUnavailableError("Timed out waiting for a database connection") from e

    async def _safe_rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError as e:
            logger.error("rollback_failed", error=str(e))

    # Transaction control

    async def begin(self) -> None:
        if not self.session.in_transaction():
            async with self._translate_errors():
                await self.session.begin()

    async def commit(self) -> None:
        async with self._translate_errors():
            await self.session.commit()

    async def rollback(self) -> None:
        if self.session.in_transaction():
            await self.session.rollback()

    async def lock_resource(self, resource_id: str) -> None:
        async with self._translate_errors():
            await self.session.execute(
                select(func.pg_advisory_xact_lock(func.hashtext(resource_id)))
            )

    # Reads

    async def find_overlapping_instances(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        lock: LockMode = LockMode.NONE,
    ) -> list[BookingInstance]:
        statement = (
            select(BookingInstance)
            .where(
                BookingInstance.resource_id == resource_id,
                BookingInstance.is_exception.is_(False),
                BookingInstance.start_time < end,
                BookingInstance.end_time > start,
            )
            .order_by(BookingInstance.start_time.asc())
        )
        async with self._translate_errors():
            result = await self.session.execute(_apply_lock(statement, lock))
        return list(result.scalars().all())

    async def find_unbounded_series(
        self, resource_id: str, lock: LockMode = LockMode.NONE
    ) -> list[BookingSeries]:
        statement = select(BookingSeries).where(
            BookingSeries.resource_id == resource_id,
            BookingSeries.is_infinite.is_(True),
        )
        async with self._translate_errors():
            result = await self.session.execute(_apply_lock(statement, lock))
        return list(result.scalars().all())

    async def find_exceptions(
        self,
        series_ids: Iterable[UUID],
        start: datetime,
        end: datetime,
        lock: LockMode = LockMode.NONE,
    ) -> list[BookingInstance]:
        series_ids = list(series_ids)
        if not series_ids:
            return []
        statement = select(BookingInstance).where(
            BookingInstance.series_id.in_(series_ids),
            BookingInstance.is_exception.is_(True),
            BookingInstance.start_time >= start,
            BookingInstance.start_time < end,
        )
        async with self._translate_errors():
            result = await self.session.execute(_apply_lock(statement, lock))
        return list(result.scalars().all())

    async def get_series(self, series_id: UUID) -> Optional[BookingSeries]:
        async with self._translate_errors():
            result = await self.session.execute(
                select(BookingSeries).where(BookingSeries.id == series_id)
            )
        return result.scalar_one_or_none()

    async def find_instances_by_series(self, series_id: UUID) -> list[BookingInstance]:
        async with self._translate_errors():
            result = await self.session.execute(
                select(BookingInstance)
                .where(BookingInstance.series_id == series_id)
                .order_by(BookingInstance.start_time.asc())
            )
        return list(result.scalars().all())

    async def find_instance_on_day(
        self,
        series_id: UUID,
        day_start: datetime,
        day_end: datetime,
        is_exception: bool,
    ) -> Optional[BookingInstance]:
        statement = (
            select(BookingInstance)
            .where(
                BookingInstance.series_id == series_id,
                BookingInstance.is_exception.is_(is_exception),
                BookingInstance.start_time >= day_start,
                BookingInstance.start_time < day_end,
            )
            .order_by(BookingInstance.start_time.asc())
            .limit(1)
        )
        async with self._translate_errors():
            result = await self.session.execute(statement.with_for_update())
        return result.scalar_one_or_none()

    # Writes

    async def add_series(self, series: BookingSeries, instances: list[BookingInstance]) -> None:
        async with self._translate_errors():
            self.session.add(series)
            await self.session.flush()
            if instances:
                self.session.add_all(instances)
                await self.session.flush()

    async def add_instance(self, instance: BookingInstance) -> None:
        async with self._translate_errors():
            self.session.add(instance)
            await self.session.flush()

    async def mark_exception(self, instance: BookingInstance) -> BookingInstance:
        async with self._translate_errors():
            instance.is_exception = True
            await self.session.flush()
            await self.session.refresh(instance)
        return instance

    async def delete_series(self, series_id: UUID) -> bool:
        async with self._translate_errors():
            # booking_instance rows go with it (ON DELETE CASCADE)
            result = await self.session.execute(
                delete(BookingSeries).where(BookingSeries.id == series_id)
            )
        return result.rowcount > 0

"""
Process-local booking store.

InMemoryDatabase holds committed rows and the per-resource writer locks.
Each InMemoryBookingStore is one unit of work over it: writes are staged
until commit(), and reads see committed rows plus the handle's own staged
writes. Row-level lock modes are accepted and ignored. The per-resource lock
already serialises every writer of a resource, which is stronger.

commit() re-checks the range-exclusion invariant (non-exception instances of a
resource may not overlap) and raises StorageConflictError on violation, like
the PostgreSQL exclusion constraint does.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from resource_booking.core.clock import utc_now
from resource_booking.core.exceptions import StorageConflictError
from resource_booking.models import BookingInstance, BookingSeries
from resource_booking.models.instance import EXCLUSION_CONSTRAINT_NAME
from resource_booking.services.interfaces.store import BookingStore, LockMode
from resource_booking.services.intervals import overlaps


def _detached_copy(row):
    model = type(row)
    return model(**{column.key: getattr(row, column.key) for column in model.__table__.columns})


class InMemoryDatabase:
    def __init__(self):
        self.series: dict[UUID, BookingSeries] = {}
        self.instances: dict[UUID, BookingInstance] = {}
        self.resource_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)


class InMemoryBookingStore(BookingStore):
    def __init__(self, database: InMemoryDatabase, serialize_writers: bool = True):
        self.database = database
        # False lets concurrent writers interleave; only the commit-time check protects them
        self.serialize_writers = serialize_writers
        self._held_locks: list[asyncio.Lock] = []
        self._reset_staging()

    def _reset_staging(self) -> None:
        self._new_series: dict[UUID, BookingSeries] = {}
        self._new_instances: dict[UUID, BookingInstance] = {}
        self._marked_exceptions: set[UUID] = set()
        self._deleted_series: set[UUID] = set()

    def _release_locks(self) -> None:
        while self._held_locks:
            self._held_locks.pop().release()

    # Transaction control

    async def begin(self) -> None:
        pass

    async def commit(self) -> None:
        try:
            self._check_exclusion()
        except StorageConflictError:
            await self.rollback()
            raise

        db = self.database
        for series_id in self._deleted_series:
            db.series.pop(series_id, None)
            for instance_id in [i.id for i in db.instances.values() if i.series_id == series_id]:
                del db.instances[instance_id]
        for instance_id in self._marked_exceptions:
            if instance_id in db.instances:
                db.instances[instance_id].is_exception = True
                db.instances[instance_id].updated_at = utc_now()
        db.series.update({k: _detached_copy(v) for k, v in self._new_series.items()})
        db.instances.update({k: _detached_copy(v) for k, v in self._new_instances.items()})

        self._reset_staging()
        self._release_locks()

    async def rollback(self) -> None:
        self._reset_staging()
        self._release_locks()

    async def lock_resource(self, resource_id: str) -> None:
        if not self.serialize_writers:
            return
        lock = self.database.resource_locks[resource_id]
        if lock in self._held_locks:
            return
        await lock.acquire()
        self._held_locks.append(lock)

    def _check_exclusion(self) -> None:
        committed = [
            i for i in self.database.instances.values()
            if not i.is_exception
            and i.id not in self._marked_exceptions
            and i.series_id not in self._deleted_series
        ]
        checked: list[BookingInstance] = []
        for new in self._new_instances.values():
            if new.is_exception:
                continue
            for other in committed + checked:
                if other.resource_id == new.resource_id and overlaps(
                    new.start_time, new.end_time, other.start_time, other.end_time
                ):
                    raise StorageConflictError(
                        f"{EXCLUSION_CONSTRAINT_NAME}: {new.resource_id} "
                        f"[{new.start_time.isoformat()}, {new.end_time.isoformat()}) "
                        f"overlaps instance {other.id}"
                    )
            checked.append(new)

    # Visible state

    def _visible_series(self) -> list[BookingSeries]:
        rows = [s for s in self.database.series.values() if s.id not in self._deleted_series]
        rows.extend(self._new_series.values())
        return rows

    def _visible_instances(self) -> list[BookingInstance]:
        rows = []
        for instance in self.database.instances.values():
            if instance.series_id in self._deleted_series:
                continue
            copy = _detached_copy(instance)
            if instance.id in self._marked_exceptions:
                copy.is_exception = True
            rows.append(copy)
        rows.extend(_detached_copy(i) for i in self._new_instances.values())
        return rows

    # Reads

    async def find_overlapping_instances(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        lock: LockMode = LockMode.NONE,
    ) -> list[BookingInstance]:
        rows = [
            i for i in self._visible_instances()
            if i.resource_id == resource_id
            and not i.is_exception
            and overlaps(i.start_time, i.end_time, start, end)
        ]
        return sorted(rows, key=lambda i: i.start_time)

    async def find_unbounded_series(
        self, resource_id: str, lock: LockMode = LockMode.NONE
    ) -> list[BookingSeries]:
        return [
            _detached_copy(s) for s in self._visible_series()
            if s.resource_id == resource_id and s.is_infinite
        ]

    async def find_exceptions(
        self,
        series_ids: Iterable[UUID],
        start: datetime,
        end: datetime,
        lock: LockMode = LockMode.NONE,
    ) -> list[BookingInstance]:
        wanted = set(series_ids)
        if not wanted:
            return []
        return [
            i for i in self._visible_instances()
            if i.series_id in wanted and i.is_exception and start <= i.start_time < end
        ]

    async def get_series(self, series_id: UUID) -> Optional[BookingSeries]:
        for series in self._visible_series():
            if series.id == series_id:
                return _detached_copy(series)
        return None

    async def find_instances_by_series(self, series_id: UUID) -> list[BookingInstance]:
        rows = [i for i in self._visible_instances() if i.series_id == series_id]
        return sorted(rows, key=lambda i: i.start_time)

    async def find_instance_on_day(
        self,
        series_id: UUID,
        day_start: datetime,
        day_end: datetime,
        is_exception: bool,
    ) -> Optional[BookingInstance]:
        rows = [
            i for i in await self.find_instances_by_series(series_id)
            if i.is_exception == is_exception and day_start <= i.start_time < day_end
        ]
        return rows[0] if rows else None

    # Writes

    async def add_series(self, series: BookingSeries, instances: list[BookingInstance]) -> None:
        self._new_series[series.id] = series
        for instance in instances:
            self._new_instances[instance.id] = instance

    async def add_instance(self, instance: BookingInstance) -> None:
        self._new_instances[instance.id] = instance

    async def mark_exception(self, instance: BookingInstance) -> BookingInstance:
        if instance.id in self._new_instances:
            self._new_instances[instance.id].is_exception = True
        else:
            self._marked_exceptions.add(instance.id)
        instance.is_exception = True
        instance.updated_at = utc_now()
        return instance

    async def delete_series(self, series_id: UUID) -> bool:
        if series_id in self._new_series:
            del self._new_series[series_id]
            for instance_id in [i.id for i in self._new_instances.values() if i.series_id == series_id]:
                del self._new_instances[instance_id]
            return True
        if series_id in self.database.series and series_id not in self._deleted_series:
            self._deleted_series.add(series_id)
            return True
        return False

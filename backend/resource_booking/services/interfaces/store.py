"""
Booking store interface.

The core never touches a database session directly: it talks to a
BookingStore, a transactional handle over BookingSeries/BookingInstance rows.
Implementations:
- SqlAlchemyBookingStore: PostgreSQL via an AsyncSession (production)
- InMemoryBookingStore: process-local, used by tests and STORAGE_BACKEND=memory

One store object is one unit of work. Concurrent requests each get their own
handle; handles over the same database share committed state and locks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

from resource_booking.models import BookingInstance, BookingSeries


class LockMode(str, Enum):
    NONE = "none"
    SHARE = "share"  # SELECT ... FOR SHARE
    UPDATE = "update"  # SELECT ... FOR UPDATE


@dataclass(frozen=True)
class LockingStrategy:
    """Row-lock modes used by one conflict check."""

    instances: LockMode = LockMode.NONE
    series: LockMode = LockMode.NONE
    exceptions: LockMode = LockMode.NONE
    # Serialize writers on the resource before reading
    resource: bool = False

    @property
    def is_locking(self) -> bool:
        return self.resource or any(
            mode is not LockMode.NONE for mode in (self.instances, self.series, self.exceptions)
        )


UNLOCKED = LockingStrategy()

# Creation path: read-to-write on materialized rows, shared on unbounded series
# and their exception rows, plus the per-resource writer lock.
COMMIT_LOCKS = LockingStrategy(
    instances=LockMode.UPDATE,
    series=LockMode.SHARE,
    exceptions=LockMode.SHARE,
    resource=True,
)


class BookingStore(ABC):

    # Transaction control

    @abstractmethod
    async def begin(self) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        """
        Commit staged writes.

        Raises:
            StorageConflictError: the range-exclusion guarantee rejected a write.
                The transaction is rolled back before raising.
        """
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

    @abstractmethod
    async def lock_resource(self, resource_id: str) -> None:
        """Block other writers on this resource until the transaction ends."""
        pass

    # Reads

    @abstractmethod
    async def find_overlapping_instances(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        lock: LockMode = LockMode.NONE,
    ) -> list[BookingInstance]:
        """Non-exception instances of the resource overlapping [start, end), ordered by start."""
        pass

    @abstractmethod
    async def find_unbounded_series(
        self, resource_id: str, lock: LockMode = LockMode.NONE
    ) -> list[BookingSeries]:
        pass

    @abstractmethod
    async def find_exceptions(
        self,
        series_ids: Iterable[UUID],
        start: datetime,
        end: datetime,
        lock: LockMode = LockMode.NONE,
    ) -> list[BookingInstance]:
        """Exception rows of the given series whose start lies in [start, end)."""
        pass

    @abstractmethod
    async def get_series(self, series_id: UUID) -> Optional[BookingSeries]:
        pass

    @abstractmethod
    async def find_instances_by_series(self, series_id: UUID) -> list[BookingInstance]:
        pass

    @abstractmethod
    async def find_instance_on_day(
        self,
        series_id: UUID,
        day_start: datetime,
        day_end: datetime,
        is_exception: bool,
    ) -> Optional[BookingInstance]:
        pass

    # Writes

    @abstractmethod
    async def add_series(self, series: BookingSeries, instances: list[BookingInstance]) -> None:
        pass

    @abstractmethod
    async def add_instance(self, instance: BookingInstance) -> None:
        pass

    @abstractmethod
    async def mark_exception(self, instance: BookingInstance) -> BookingInstance:
        pass

    @abstractmethod
    async def delete_series(self, series_id: UUID) -> bool:
        """Delete a series and its instances. False if it did not exist."""
        pass

"""
Pytest fixtures for the booking core, the HTTP client, and a pinned clock.

Tests run against the in-memory store: each test gets a fresh database, and
every store handle over it behaves like one transaction. "Now" is pinned to
Monday 2030-01-07 08:00 UTC so past/future checks and horizons are stable.
"""

import os

os.environ["STORAGE_BACKEND"] = "memory"
os.environ["REDIS_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from resource_booking.main import app
from resource_booking.api.dependencies import get_clock
from resource_booking.infrastructure.memory_store import InMemoryBookingStore, InMemoryDatabase
from resource_booking.services.booking_service import BookingCreated, BookingRequest, BookingService
from resource_booking.services.recurrence_service import RecurrenceEngine
from resource_booking.services.store_factory import get_store

NOW = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)
TOMORROW = NOW + timedelta(days=1)


def fixed_clock() -> datetime:
    return NOW


def at(day: int, hour: int, minute: int = 0, month: int = 1, year: int = 2030) -> datetime:
    """UTC instant shorthand, January 2030 by default."""
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


async def book(
    service: BookingService,
    resource_id: str,
    start: datetime,
    end: Optional[datetime] = None,
    rule: Optional[str] = None,
):
    return await service.create_booking(
        BookingRequest(
            resource_id=resource_id,
            start_time=start,
            end_time=end or start + timedelta(hours=1),
            recurrence_rule=rule,
        )
    )


async def book_ok(service: BookingService, *args, **kwargs) -> BookingCreated:
    result = await book(service, *args, **kwargs)
    assert isinstance(result, BookingCreated), result
    return result


@pytest.fixture
def memory_db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def store(memory_db: InMemoryDatabase) -> InMemoryBookingStore:
    return InMemoryBookingStore(memory_db)


@pytest.fixture
def engine() -> RecurrenceEngine:
    return RecurrenceEngine(clock=fixed_clock)


@pytest.fixture
def service(store: InMemoryBookingStore) -> BookingService:
    return BookingService(store, clock=fixed_clock)


@pytest.fixture
def make_service(memory_db: InMemoryDatabase):
    """Factory for independent service/store handles over the shared database."""

    def factory(store_class=InMemoryBookingStore, **store_kwargs) -> BookingService:
        return BookingService(store_class(memory_db, **store_kwargs), clock=fixed_clock)

    return factory


@pytest_asyncio.fixture(scope="function")
async def client(memory_db: InMemoryDatabase) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the store bound to the test database and the clock pinned."""

    async def override_get_store():
        yield InMemoryBookingStore(memory_db)

    app.dependency_overrides[get_store] = override_get_store
    app.dependency_overrides[get_clock] = lambda: fixed_clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

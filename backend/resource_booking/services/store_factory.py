"""
Booking store factory.
Configures which storage backend the API uses.
"""

from typing import AsyncGenerator

from resource_booking.core.config import get_settings
from resource_booking.infrastructure.memory_store import InMemoryBookingStore, InMemoryDatabase
from resource_booking.services.interfaces.store import BookingStore

# Singleton process-local database for STORAGE_BACKEND=memory
_memory_database: InMemoryDatabase = None


def get_memory_database() -> InMemoryDatabase:
    """Get the process-local database singleton."""
    global _memory_database
    if _memory_database is None:
        _memory_database = InMemoryDatabase()
    return _memory_database


async def get_store() -> AsyncGenerator[BookingStore, None]:
    """
    Yield one booking store per request.

    Backend selection via STORAGE_BACKEND:
    - postgres: SqlAlchemyBookingStore over a pooled AsyncSession (default)
    - memory: InMemoryBookingStore over the process-local database
    """
    if get_settings().STORAGE_BACKEND == "memory":
        yield InMemoryBookingStore(get_memory_database())
        return

    # Imported lazily so the memory backend never builds an engine
    from resource_booking.db.session import AsyncSessionLocal
    from resource_booking.infrastructure.sql_store import SqlAlchemyBookingStore

    async with AsyncSessionLocal() as session:
        yield SqlAlchemyBookingStore(session)

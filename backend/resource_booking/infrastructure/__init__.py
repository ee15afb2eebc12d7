"""
Infrastructure layer - external system integrations.
Keeps business logic clean from storage details.
"""

from .memory_store import InMemoryBookingStore, InMemoryDatabase

__all__ = ['InMemoryBookingStore', 'InMemoryDatabase']

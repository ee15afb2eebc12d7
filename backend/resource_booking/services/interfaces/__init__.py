"""
Service interfaces for dependency inversion.
Allows swapping storage implementations without changing business logic.
"""

from .store import COMMIT_LOCKS, UNLOCKED, BookingStore, LockingStrategy, LockMode

__all__ = ['BookingStore', 'LockMode', 'LockingStrategy', 'UNLOCKED', 'COMMIT_LOCKS']

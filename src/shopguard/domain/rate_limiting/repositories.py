"""
Rate Limiting Domain Repositories

The narrow contract the admission engine needs from a shared counter store.
Implementations live in :mod:`shopguard.infrastructure.repositories` (Redis
for production, an in-process store for single-process deployments and tests).

Design Principles:
- Dependency Inversion: The domain depends on this abstraction only
- Error Translation: Implementations raise ``StoreUnavailableError`` for every
  connection, timeout or protocol failure, never a client-library exception
- Testability: Easily swapped for an in-memory or mocked store
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple


class CounterStore(ABC):
    """
    Shared, concurrently accessed key-value store for window counters.

    All methods may raise ``StoreUnavailableError``.
    """

    @abstractmethod
    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        """
        Atomically increment ``key``, creating it with ``ttl_seconds`` expiry if absent.

        This is the single primitive the fixed-window algorithm relies on. The
        create-with-TTL and the increment must happen as one operation, so two
        concurrent first writers can never both see a count of 1 and a key can
        never be left without expiry.

        Args:
            key: Counter key
            ttl_seconds: Window length applied when the key is created

        Returns:
            Tuple of (count after increment, remaining TTL in milliseconds)
        """
        pass

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Increment ``key`` without touching its expiry. Returns the new count."""
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: int, ttl_seconds: int) -> bool:
        """Set ``key`` to ``value`` with expiry only if it does not exist.

        Returns:
            True if this call created the key
        """
        pass

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining time-to-live in milliseconds.

        Returns:
            ``-2`` if the key does not exist, ``-1`` if it has no expiry
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[int]:
        """Current counter value, or None if the key does not exist."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if it existed."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Health check."""
        pass

"""
In-process counter store.

Only correct for a single process: counters are not shared between workers.
Used when ``RATE_LIMIT_STORAGE=memory`` and throughout the test-suite, where
the injectable clock lets tests move past a window without sleeping.
"""

import math
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from shopguard.domain.rate_limiting.repositories import CounterStore


class InMemoryCounterStore(CounterStore):
    """Dictionary-backed CounterStore with lazy expiry.

    Values are ``(count, expires_at)`` tuples; ``expires_at`` is None for keys
    without expiry. A single lock makes each operation atomic.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[int, Optional[float]]] = {}

    def _live(self, key: str, now: float) -> Optional[Tuple[int, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and now >= expires_at:
            del self._data[key]
            return None
        return entry

    @staticmethod
    def _remaining_ms(expires_at: Optional[float], now: float) -> int:
        if expires_at is None:
            return -1
        return max(0, math.ceil((expires_at - now) * 1000))

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                count, expires_at = 1, now + ttl_seconds
            else:
                count, expires_at = entry[0] + 1, entry[1]
                if expires_at is None:
                    expires_at = now + ttl_seconds
            self._data[key] = (count, expires_at)
            return count, self._remaining_ms(expires_at, now)

    async def increment(self, key: str) -> int:
        with self._lock:
            entry = self._live(key, self._clock())
            count, expires_at = (entry[0] + 1, entry[1]) if entry else (1, None)
            self._data[key] = (count, expires_at)
            return count

    async def set_if_absent(self, key: str, value: int, ttl_seconds: int) -> bool:
        with self._lock:
            now = self._clock()
            if self._live(key, now) is not None:
                return False
            self._data[key] = (int(value), now + ttl_seconds)
            return True

    async def ttl(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                return -2
            return self._remaining_ms(entry[1], now)

    async def get(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key, self._clock())
            return None if entry is None else entry[0]

    async def delete(self, key: str) -> bool:
        with self._lock:
            if self._live(key, self._clock()) is None:
                return False
            del self._data[key]
            return True

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

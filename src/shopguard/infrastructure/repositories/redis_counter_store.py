"""
Redis-backed counter store.

The fixed-window increment runs as one Lua script so that creation, increment
and expiry happen atomically on the server. Every client-library failure is
translated into ``StoreUnavailableError`` for the engine to fail open on.
"""

from typing import Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import NoScriptError, RedisError
from structlog import get_logger

from shopguard.core.exceptions import StoreUnavailableError
from shopguard.domain.rate_limiting.repositories import CounterStore

logger = get_logger(__name__)

# KEYS[1] = counter key, ARGV[1] = window in milliseconds.
# Re-arms the expiry whenever it is missing, so a key can never outlive its window.
FIXED_WINDOW_LUA = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisCounterStore(CounterStore):
    """
    CounterStore implementation using Redis atomic operations.

    Args:
        redis_client: The async Redis client instance (``decode_responses=True``).
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client
        self._script_sha: Optional[str] = None

    async def _register_scripts(self) -> str:
        if self._script_sha is None:
            self._script_sha = await self.redis.script_load(FIXED_WINDOW_LUA)
            logger.debug("rate_limit_script_loaded", sha=self._script_sha)
        return self._script_sha

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        ttl_ms = int(ttl_seconds) * 1000
        try:
            sha = await self._register_scripts()
            try:
                result = await self.redis.evalsha(sha, 1, key, ttl_ms)
            except NoScriptError:
                # Script cache was flushed (restart or SCRIPT FLUSH); load it again
                self._script_sha = None
                sha = await self._register_scripts()
                result = await self.redis.evalsha(sha, 1, key, ttl_ms)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis increment failed for {key}: {e}") from e
        count, remaining_ms = result
        return int(count), int(remaining_ms)

    async def increment(self, key: str) -> int:
        try:
            return int(await self.redis.incr(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Redis INCR failed for {key}: {e}") from e

    async def set_if_absent(self, key: str, value: int, ttl_seconds: int) -> bool:
        try:
            created = await self.redis.set(key, value, ex=ttl_seconds, nx=True)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis SET NX failed for {key}: {e}") from e
        return bool(created)

    async def ttl(self, key: str) -> int:
        try:
            return int(await self.redis.pttl(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Redis PTTL failed for {key}: {e}") from e

    async def get(self, key: str) -> Optional[int]:
        try:
            value = await self.redis.get(key)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis GET failed for {key}: {e}") from e
        return None if value is None else int(value)

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.redis.delete(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Redis DEL failed for {key}: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            raise StoreUnavailableError(f"Redis PING failed: {e}") from e

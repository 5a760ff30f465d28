import fakeredis
import fakeredis.aioredis
import pytest

from shopguard.core.metrics import RateLimitMetrics
from shopguard.domain.rate_limiting.access_lists import AccessLists
from shopguard.domain.rate_limiting.identity import ClientIdentityResolver
from shopguard.domain.rate_limiting.registry import RuleRegistry
from shopguard.domain.rate_limiting.services import (
    AdmissionGate,
    FixedWindowRateLimiter,
    PolicySelector,
)
from shopguard.infrastructure.repositories.in_memory_counter_store import InMemoryCounterStore
from shopguard.infrastructure.repositories.redis_counter_store import RedisCounterStore


class FakeClock:
    """Manually advanced wall clock shared by stores and the engine."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
async def redis_client():
    """fakeredis client with its own server, so tests never share counters."""
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def redis_store(redis_client):
    return RedisCounterStore(redis_client)


@pytest.fixture
def metrics():
    return RateLimitMetrics()


@pytest.fixture
def limiter(memory_store, metrics, clock):
    return FixedWindowRateLimiter(memory_store, metrics=metrics, clock=clock)


@pytest.fixture
def registry():
    return RuleRegistry()


@pytest.fixture
def access_lists():
    return AccessLists()


@pytest.fixture
def gate(registry, access_lists, limiter, metrics):
    return AdmissionGate(
        resolver=ClientIdentityResolver(),
        access_lists=access_lists,
        selector=PolicySelector(registry),
        limiter=limiter,
        metrics=metrics,
    )


"""Dependency wiring for admission control.

``build_rate_limiting`` assembles every collaborator once per process from
settings; the lifespan stores the result on ``app.state`` and FastAPI
dependencies hand its parts to routes. Nothing here is a module-level
singleton, so tests build their own container with a fake store and clock.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request
from redis.asyncio import Redis
from structlog import get_logger

from shopguard.core.config.settings import Settings
from shopguard.core.metrics import RateLimitMetrics
from shopguard.domain.rate_limiting.access_lists import AccessLists
from shopguard.domain.rate_limiting.entities import AccessListEntry
from shopguard.domain.rate_limiting.identity import ClientIdentityResolver
from shopguard.domain.rate_limiting.registry import RuleRegistry, build_default_rule
from shopguard.domain.rate_limiting.repositories import CounterStore
from shopguard.domain.rate_limiting.services import (
    AdmissionGate,
    FixedWindowRateLimiter,
    PolicySelector,
    RateLimitAdminService,
    TieredPolicy,
    build_tiered_policy,
)
from shopguard.domain.rate_limiting.value_objects import CallerTier, parse_rate_string
from shopguard.infrastructure.redis import create_redis_client
from shopguard.infrastructure.repositories.in_memory_counter_store import InMemoryCounterStore
from shopguard.infrastructure.repositories.redis_counter_store import RedisCounterStore

logger = get_logger(__name__)

CONTAINER_STATE = "rate_limiting"


@dataclass
class RateLimitingContainer:
    """Process-wide admission-control collaborators."""

    store: CounterStore
    registry: RuleRegistry
    access_lists: AccessLists
    metrics: RateLimitMetrics
    limiter: FixedWindowRateLimiter
    selector: PolicySelector
    gate: AdmissionGate
    admin: RateLimitAdminService
    tiered_policy: TieredPolicy
    key_prefix: str
    redis_client: Optional[Redis] = None

    async def aclose(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            logger.debug("rate_limit_redis_client_closed")


def _seed_entries(patterns, reason: str):
    return [AccessListEntry(pattern=p, reason=reason) for p in patterns]


def build_rate_limiting(
    settings: Settings,
    store: Optional[CounterStore] = None,
    clock: Callable[[], float] = time.time,
) -> RateLimitingContainer:
    """Assemble admission control from settings.

    Args:
        settings: Application settings
        store: Counter store to use; built from ``RATE_LIMIT_STORAGE`` when omitted
        clock: Time source for reset timestamps

    Returns:
        RateLimitingContainer ready to be attached to ``app.state``
    """
    redis_client = None
    if store is None:
        if settings.RATE_LIMIT_STORAGE == "memory":
            store = InMemoryCounterStore(clock=clock)
        else:
            redis_client = create_redis_client(settings)
            store = RedisCounterStore(redis_client)

    prefix = settings.RATE_LIMIT_KEY_PREFIX
    requests, window_seconds = parse_rate_string(settings.RATE_LIMIT_DEFAULT)
    registry = RuleRegistry(default_rule=build_default_rule(requests, window_seconds, prefix))
    access_lists = AccessLists(
        allow=_seed_entries(settings.RATE_LIMIT_ALLOW_IDENTITIES, "configured"),
        deny=_seed_entries(settings.RATE_LIMIT_DENY_IDENTITIES, "configured"),
    )
    metrics = RateLimitMetrics()
    limiter = FixedWindowRateLimiter(store, metrics=metrics, clock=clock)
    selector = PolicySelector(registry)
    gate = AdmissionGate(
        resolver=ClientIdentityResolver(api_key_header=settings.RATE_LIMIT_API_KEY_HEADER),
        access_lists=access_lists,
        selector=selector,
        limiter=limiter,
        metrics=metrics,
        enabled=settings.RATE_LIMIT_ENABLED,
    )
    tiered_policy = build_tiered_policy(
        {CallerTier(tier): rate for tier, rate in settings.tier_rates().items()},
        key_prefix=prefix,
    )

    logger.info(
        "rate_limiting_configured",
        storage=type(store).__name__,
        enabled=settings.RATE_LIMIT_ENABLED,
        default_rate=settings.RATE_LIMIT_DEFAULT,
    )
    return RateLimitingContainer(
        store=store,
        registry=registry,
        access_lists=access_lists,
        metrics=metrics,
        limiter=limiter,
        selector=selector,
        gate=gate,
        admin=RateLimitAdminService(registry, access_lists, limiter, key_prefix=prefix),
        tiered_policy=tiered_policy,
        key_prefix=prefix,
        redis_client=redis_client,
    )


def get_rate_limiting(request: Request) -> RateLimitingContainer:
    """FastAPI dependency returning the container built by the lifespan."""
    return getattr(request.app.state, CONTAINER_STATE)


def get_admin_service(
    container: RateLimitingContainer = Depends(get_rate_limiting),
) -> RateLimitAdminService:
    return container.admin


def get_metrics(container: RateLimitingContainer = Depends(get_rate_limiting)) -> RateLimitMetrics:
    return container.metrics

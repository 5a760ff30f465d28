"""
Redis Connection Module

Builds the asynchronous Redis client that backs the shared rate-limit
counters. One client (with its connection pool) is created per process by the
application lifespan and closed on shutdown.

**Security Note**: Use ``rediss://`` (REDIS_SSL=true) when Redis is reached over
an untrusted network, and never log the connection URL, which may embed the
password.
"""

import logging

from redis.asyncio import Redis

from shopguard.core.config.settings import Settings

logger = logging.getLogger(__name__)


def create_redis_client(settings: Settings) -> Redis:
    """
    Create an asynchronous Redis client from settings.

    Socket and connect timeouts are both ``REDIS_SOCKET_TIMEOUT`` so a stalled
    store turns into a prompt error (and a fail-open admission) instead of a
    hung request.

    Returns:
        Redis: An asynchronous Redis client instance.
    """
    client = Redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )
    logger.debug("Redis client created")
    return client

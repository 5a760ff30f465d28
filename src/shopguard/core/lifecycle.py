"""Application lifecycle management.

This module handles application startup and shutdown events, ensuring proper
initialization and cleanup of application resources.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from shopguard.core.config.settings import settings
from shopguard.core.exceptions import StoreUnavailableError
from shopguard.core.logging import logger
from shopguard.domain.rate_limiting.repositories import CounterStore
from shopguard.infrastructure.dependency_injection.rate_limit_dependencies import (
    CONTAINER_STATE,
    build_rate_limiting,
)


def create_lifespan_manager(counter_store: Optional[CounterStore] = None):
    """Create the application lifespan manager.

    Args:
        counter_store: Optional store overriding ``RATE_LIMIT_STORAGE``

    Returns:
        AsyncContextManager: The lifespan manager for the FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Builds admission control on startup and releases the Redis pool on shutdown.

        Counter store outages at startup are logged but do not stop the
        application: the gate fails open until the store comes back.

        Args:
            app (FastAPI): The FastAPI application instance
        """
        container = build_rate_limiting(settings, store=counter_store)
        setattr(app.state, CONTAINER_STATE, container)
        try:
            await container.store.ping()
        except StoreUnavailableError as e:
            logger.warning("counter_store_unavailable_on_startup", error=str(e))
        logger.info("application_startup", env=settings.APP_ENV, version=settings.VERSION)

        yield

        await container.aclose()
        logger.info("application_shutdown", env=settings.APP_ENV)

    return lifespan

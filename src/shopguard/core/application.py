"""Application factory for creating and configuring the FastAPI application.

This module provides a factory function to create a properly configured FastAPI application
with all necessary middleware, exception handlers, and routers registered.
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from shopguard.adapters.api.v1 import api_router
from shopguard.core.config.settings import settings
from shopguard.core.handlers import register_exception_handlers
from shopguard.core.lifecycle import create_lifespan_manager
from shopguard.core.middleware import configure_middleware
from shopguard.domain.rate_limiting.repositories import CounterStore


def create_application(counter_store: Optional[CounterStore] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        counter_store: Optional counter store, mainly for tests; when omitted
            the store is chosen by ``RATE_LIMIT_STORAGE``

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Admission control and rate limiting for the storefront API.",
        lifespan=create_lifespan_manager(counter_store),
        default_response_class=JSONResponse,
    )

    configure_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api/v1")

    return app

"""Middleware configuration for the FastAPI application.

This module handles the configuration and registration of all middleware
components: CORS and rate-limit response headers.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from shopguard.core.config.settings import settings

RATE_LIMIT_INFO_STATE = "rate_limit_info"


def configure_middleware(app: FastAPI) -> None:
    """Configure all middleware for the FastAPI application.

    Args:
        app (FastAPI): The FastAPI application instance
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-RateLimit-Window",
            "Retry-After",
        ],
    )

    app.middleware("http")(rate_limit_headers_middleware)


async def rate_limit_headers_middleware(request: Request, call_next):
    """Stamps rate-limit headers recorded by the gate onto the response.

    Gate dependencies store the admitted request's ``RateLimitInfo`` on
    ``request.state``. Rejections already carry their headers from the 429
    handler, so existing headers are left alone.

    Args:
        request (Request): The incoming request
        call_next: The next middleware or route handler

    Returns:
        Response: The response with rate-limit headers
    """
    response = await call_next(request)
    info = getattr(request.state, RATE_LIMIT_INFO_STATE, None)
    if info is not None:
        for name, value in info.to_headers().items():
            response.headers.setdefault(name, value)
    return response

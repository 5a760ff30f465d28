"""
Global exception handlers for the FastAPI application.

This module contains centralized handlers for shopguard exceptions,
translating them into appropriate HTTP responses.
"""

import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status
from structlog import get_logger

from shopguard.core.exceptions import (
    ClientBlockedError,
    InvalidRuleError,
    PermissionError,
    QuotaExceededError,
    ShopguardError,
    StoreUnavailableError,
    UnknownRuleError,
    ValidationError,
)

__all__ = [
    "quota_exceeded_error_handler",
    "client_blocked_error_handler",
    "permission_error_handler",
    "validation_error_handler",
    "unknown_rule_error_handler",
    "store_unavailable_error_handler",
    "shopguard_error_handler",
    "register_exception_handlers",
]

logger = get_logger(__name__)


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def quota_exceeded_error_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
    """Handles `QuotaExceededError`, returning a `429 Too Many Requests`.

    The body carries the rate metadata of the rejecting rule and its custom
    violation message, if any. Rate headers and `Retry-After` are stamped on
    the response.

    Args:
        request: The incoming `Request` object.
        exc: The `QuotaExceededError` instance.

    Returns:
        A `JSONResponse` with a 429 status code.
    """
    content = {
        "error": "Rate limit exceeded",
        "code": exc.code,
        "message": exc.message,
        **exc.info.to_dict(),
    }
    if exc.violation_message:
        content["violation_message"] = exc.violation_message
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=content,
        headers=exc.info.to_headers(now=time.time()),
    )


async def client_blocked_error_handler(request: Request, exc: ClientBlockedError) -> JSONResponse:
    """Handles `ClientBlockedError` (deny list), returning a `403 Forbidden`.

    No rate metadata is attached because no quota was consulted.
    """
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": exc.message, "code": exc.code},
    )


async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
    """Handles `PermissionError`, returning a `403 Forbidden`."""
    logger.warning(
        "permission_denied",
        error=exc.code,
        client_ip=_client_host(request),
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": exc.message, "code": exc.code},
    )


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handles `ValidationError` and `InvalidRuleError`, returning a `422 Unprocessable Entity`."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.message, "code": exc.code},
    )


async def unknown_rule_error_handler(request: Request, exc: UnknownRuleError) -> JSONResponse:
    """Handles `UnknownRuleError`, returning a `404 Not Found`."""
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": exc.message, "code": exc.code},
    )


async def store_unavailable_error_handler(
    request: Request, exc: StoreUnavailableError
) -> JSONResponse:
    """Handles `StoreUnavailableError`, returning a `503 Service Unavailable`.

    Only administrative counter reads and clears let this escape; the request
    gate always fails open instead.
    """
    logger.error("counter_store_unavailable", error=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Counter store unavailable", "code": exc.code},
    )


async def shopguard_error_handler(request: Request, exc: ShopguardError) -> JSONResponse:
    """Catch-all for shopguard errors without a dedicated handler; `400 Bad Request`."""
    logger.warning("unhandled_shopguard_error", error=exc.code, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.message, "code": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application.

    Starlette resolves handlers along the exception's MRO, so the specific
    handlers win over the `ShopguardError` catch-all.
    """
    app.add_exception_handler(QuotaExceededError, quota_exceeded_error_handler)
    app.add_exception_handler(ClientBlockedError, client_blocked_error_handler)
    app.add_exception_handler(PermissionError, permission_error_handler)
    app.add_exception_handler(InvalidRuleError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(UnknownRuleError, unknown_rule_error_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_error_handler)
    app.add_exception_handler(ShopguardError, shopguard_error_handler)

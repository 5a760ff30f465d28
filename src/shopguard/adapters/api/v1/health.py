"""Health check endpoint."""
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from shopguard.core.config.settings import settings
from shopguard.core.exceptions import StoreUnavailableError
from shopguard.core.logging import logger
from shopguard.infrastructure.dependency_injection.rate_limit_dependencies import (
    RateLimitingContainer,
    get_rate_limiting,
)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    env: str
    rate_limiting_enabled: bool
    services: Dict[str, Any]
    timestamp: datetime


async def check_counter_store_health(container: RateLimitingContainer) -> Dict[str, Any]:
    """Ping the counter store and measure the round-trip."""
    started = datetime.now(timezone.utc)
    try:
        await container.store.ping()
    except StoreUnavailableError as e:
        logger.error("counter_store_health_check_failed", error=str(e))
        return {"status": "unhealthy", "backend": type(container.store).__name__, "error": e.message}
    latency = (datetime.now(timezone.utc) - started).total_seconds() * 1000
    return {"status": "healthy", "backend": type(container.store).__name__, "latency_ms": latency}


@router.get("/", response_model=HealthResponse)
async def health_check(container: RateLimitingContainer = Depends(get_rate_limiting)):
    """
    Reports counter store health.

    An unhealthy store only degrades the service: admission fails open, so
    the overall status is ``degraded`` rather than an error response.
    """
    store_health = await check_counter_store_health(container)
    overall_status = "ok" if store_health["status"] == "healthy" else "degraded"
    return HealthResponse(
        status=overall_status,
        env=settings.APP_ENV,
        rate_limiting_enabled=container.gate.enabled,
        services={"counter_store": store_health},
        timestamp=datetime.now(timezone.utc),
    )

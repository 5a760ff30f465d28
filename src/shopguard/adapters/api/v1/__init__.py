"""API v1 router configuration.
"""

from fastapi import APIRouter

from .admin.rate_limits import router as admin_rate_limits_router
from .health import router as health_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(admin_rate_limits_router, prefix="/admin")

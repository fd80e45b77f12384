"""API v1 router configuration.
"""

from fastapi import APIRouter

from .admin.circuit_breakers import router as admin_circuit_breakers_router
from .admin.rate_limits import router as admin_rate_limits_router
from .health import router as health_router
from .metrics import router as metrics_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(metrics_router, prefix="/metrics", tags=["metrics"])
api_router.include_router(
    admin_circuit_breakers_router, prefix="/admin/circuit-breakers", tags=["admin", "circuit-breakers"]
)
api_router.include_router(admin_rate_limits_router, prefix="/admin/rate-limits", tags=["admin", "rate-limits"])

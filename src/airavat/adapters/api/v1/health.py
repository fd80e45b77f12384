import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel
from redis.asyncio import Redis
from redis.exceptions import RedisError

from airavat.core.config.settings import settings
from airavat.core.logging import logger
from airavat.infrastructure.redis import get_redis

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    env: str
    version: str
    services: Dict[str, Any]
    open_circuits: List[str]
    timestamp: datetime


async def check_redis_health(redis_client: Optional[Redis]) -> Dict[str, Any]:
    """Check Redis connection health."""
    if redis_client is None:
        return {"status": "disabled"}
    try:
        start = time.perf_counter()
        await redis_client.ping()
        return {"status": "healthy", "latency_ms": round((time.perf_counter() - start) * 1000, 2)}
    except (RedisError, OSError) as e:
        logger.error("redis_health_check_failed", error=str(e))
        return {"status": "unhealthy", "error": str(e)}


async def check_rate_limit_store_health(request: Request) -> Dict[str, Any]:
    store = getattr(request.app.state, "rate_limit_store", None)
    if store is None:
        return {"status": "disabled"}
    return await store.health_check()


@router.get("/", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint reporting Redis, the rate limit store and the
    dependencies whose circuits are currently open.

    Open circuits degrade the status without failing it: the service itself
    still answers, some dependencies are isolated.
    """
    redis_health, store_health = await asyncio.gather(
        check_redis_health(get_redis(request)),
        check_rate_limit_store_health(request),
    )

    registry = getattr(request.app.state, "circuit_breakers", None)
    open_circuits = registry.open_circuits() if registry is not None else []

    services_healthy = redis_health["status"] != "unhealthy" and store_health["status"] != "unhealthy"
    overall_status = "ok" if services_healthy and not open_circuits else "degraded"

    return HealthResponse(
        status=overall_status,
        env=settings.APP_ENV,
        version=settings.VERSION,
        services={"redis": redis_health, "rate_limit_store": store_health},
        open_circuits=open_circuits,
        timestamp=datetime.now(timezone.utc),
    )

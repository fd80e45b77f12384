"""Metrics endpoint for exposing resilience metrics.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from airavat.core.metrics import metrics_collector

router = APIRouter()


@router.get("/", response_model=Dict[str, Any])
async def get_metrics(request: Request):
    """Get application metrics.

    This endpoint exposes:
    - Rate limit decisions per scope (allowed, denied, served by the fallback store)
    - Circuit breaker transitions and rejections per dependency
    - Retry outcomes per operation

    Returns:
        Dict[str, Any]: The snapshot and the time it was taken.
    """
    collector = getattr(request.app.state, "metrics", None) or metrics_collector
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metrics": collector.get_metrics(),
    }

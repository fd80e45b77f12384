"""Admin Rate Limit Endpoints

Clears the counter (and any block penalty) of one identity in one scope,
e.g. to unlock a user after a support request.

Scopes are ``global``, ``burst``, ``endpoint:<path>``, ``tier:<name>`` or the
scope of a per-route rule.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status

from airavat.core.logging import logger
from airavat.domain.rate_limiting import RateLimiter, RateLimitStoreError

from .schemas import RateLimitResetResponse

router = APIRouter()


def find_limiter(request: Request, scope: str) -> Optional[RateLimiter]:
    pipeline = getattr(request.app.state, "rate_limit_pipeline", None)
    limiter = pipeline.limiter_for_scope(scope) if pipeline is not None else None
    if limiter is not None:
        return limiter

    for route_limiter in getattr(request.app.state, "route_limiters", {}).values():
        if route_limiter.rule.scope == scope:
            return route_limiter
    return None


@router.delete("/{scope:path}/{identity}", response_model=RateLimitResetResponse)
async def reset_rate_limit(scope: str, identity: str, request: Request):
    """Reset the counter of ``identity`` (``user:<id>`` or ``ip:<address>``).

    Raises:
        HTTPException: 404 when no limiter owns ``scope``, 503 when the
            counter store cannot be reached.
    """
    limiter = find_limiter(request, scope)
    if limiter is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown rate limit scope: {scope}")

    try:
        deleted = await limiter.reset(identity)
    except RateLimitStoreError as e:
        logger.error("rate_limit_manual_reset_failed", scope=scope, identity=identity, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Rate limit store unavailable"
        ) from e

    client_ip = request.client.host if request.client else "unknown"
    logger.warning("rate_limit_manual_reset", scope=scope, identity=identity, client_ip=client_ip)
    return RateLimitResetResponse(
        message="Rate limit counter reset", scope=scope, identity=identity, deleted=deleted
    )

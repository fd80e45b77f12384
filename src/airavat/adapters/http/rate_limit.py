from __future__ import annotations

"""HTTP decoration for inbound rate limiting.

- ``rate_limit_middleware`` runs every request through the layered pipeline
  built at startup (``app.state.rate_limit_pipeline``).
- ``rate_limit(rule, cost_by_method)`` is a route dependency for limits on
  individual operations, optionally weighting each HTTP method.

Authentication is provided by the surrounding platform: when it has
resolved a user it is expected on ``request.state.user`` with an ``id``, a
``role`` and optionally a subscription ``tier``.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Request, Response
from structlog import get_logger

from airavat.core.exceptions import RateLimitExceededError
from airavat.core.handlers import rate_limit_response
from airavat.domain.rate_limiting.services import RateLimiter, RateLimitPipeline
from airavat.domain.rate_limiting.value_objects import RateLimitRule

logger = get_logger(__name__)

ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})
ANONYMOUS_TIER = "anonymous"
ADMIN_TIER = "admin"

DEFAULT_METHOD_COSTS: Dict[str, int] = {
    "GET": 1,
    "HEAD": 1,
    "OPTIONS": 1,
    "POST": 2,
    "PUT": 2,
    "PATCH": 2,
    "DELETE": 3,
}

# ---------------------------------------------------------------------------
# Request identity
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def current_user(request: Request) -> Optional[Any]:
    return getattr(request.state, "user", None)


def request_identity(request: Request) -> str:
    """``user:<id>`` for authenticated requests, otherwise ``ip:<address>``."""
    user = current_user(request)
    user_id = getattr(user, "id", None)
    if user_id is not None:
        return f"user:{user_id}"
    return f"ip:{client_ip(request)}"


def resolve_tier(user: Optional[Any], pipeline: RateLimitPipeline) -> str:
    """Map the authenticated user to a rate limit tier name."""
    if user is None:
        return ANONYMOUS_TIER

    if str(getattr(user, "role", "")).upper() in ADMIN_ROLES:
        return ADMIN_TIER

    tier = getattr(user, "tier", None)
    if tier and tier in pipeline.tier_limiters:
        return tier

    return pipeline.default_tier


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


async def rate_limit_middleware(request: Request, call_next):
    """Middleware enforcing global, burst, endpoint and tier limits.

    This middleware:
    1. Skips configured paths, IPs and users
    2. Evaluates the layers in order and stops at the first denial
    3. Answers 429 with the denying layer's headers, or adds the last
       layer's headers to the downstream response where the route did not
       set its own

    Args:
        request (Request): The incoming request
        call_next: The next middleware or route handler

    Returns:
        Response: The downstream response or a 429 response
    """
    pipeline: Optional[RateLimitPipeline] = getattr(request.app.state, "rate_limit_pipeline", None)
    if pipeline is None:
        return await call_next(request)

    user = current_user(request)
    user_id = getattr(user, "id", None)
    ip = client_ip(request)
    path = request.url.path

    if pipeline.should_skip(path, ip, user_id):
        return await call_next(request)

    verdict = await pipeline.check(
        client_ip=ip,
        identity=request_identity(request),
        path=path,
        tier=resolve_tier(user, pipeline),
    )

    if not verdict.allowed:
        logger.warning(
            "request_rejected_rate_limit",
            layer=verdict.label,
            path=path,
            method=request.method,
            client_ip=ip,
        )
        return rate_limit_response(verdict.denied_by, verdict.label, verdict.headers)

    response = await call_next(request)
    for name, value in verdict.headers.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Per-route dependency
# ---------------------------------------------------------------------------


def _route_limiter(request: Request, rule: RateLimitRule) -> Optional[RateLimiter]:
    factory: Optional[Callable[[RateLimitRule], RateLimiter]] = getattr(
        request.app.state, "rate_limiter_factory", None
    )
    if factory is None:
        return None

    limiters: Dict[RateLimitRule, RateLimiter] = request.app.state.route_limiters
    limiter = limiters.get(rule)
    if limiter is None:
        limiter = limiters[rule] = factory(rule)
    return limiter


def rate_limit(
    rule: RateLimitRule, cost_by_method: Optional[Mapping[str, int]] = None
) -> Callable[[Request, Response], Any]:
    """Route dependency enforcing ``rule`` per request identity.

    Args:
        rule: The limit for the operation; its scope namespaces the counters.
        cost_by_method: Points consumed per HTTP method, e.g.
            ``DEFAULT_METHOD_COSTS``. Unlisted methods cost 1.

    Raises:
        RateLimitExceededError: When the request is denied.

    Usage:
        @router.post("/rfq", dependencies=[Depends(rate_limit(RFQ_RULE, DEFAULT_METHOD_COSTS))])
    """
    costs = {method.upper(): cost for method, cost in (cost_by_method or {}).items()}

    async def dependency(request: Request, response: Response) -> None:
        limiter = _route_limiter(request, rule)
        if limiter is None:
            return

        cost = costs.get(request.method.upper(), 1)
        decision = await limiter.consume(request_identity(request), cost)
        if not decision.allowed:
            raise RateLimitExceededError(decision)

        for name, value in decision.to_http_headers().items():
            response.headers[name] = value
        if costs:
            response.headers["X-RateLimit-Cost"] = str(cost)

    return dependency

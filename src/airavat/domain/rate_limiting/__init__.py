"""Rate Limiting Domain Module

Distributed rate limiting for inbound requests:

- Value Objects: rules, strategies and counter states
- Entities: per-scope decisions and multi-scope verdicts
- Domain Services: the per-scope limiter and the layered pipeline
- Repositories: the counter store contract
"""

from .entities import RateLimitDecision, RateLimitVerdict
from .repositories import RateLimitStore, RateLimitStoreError
from .services import EndpointMatcher, RateLimitPipeline, RateLimiter
from .value_objects import (
    RateLimitRule,
    RateLimitState,
    RateLimitStrategy,
    TokenBucketState,
    WindowState,
)

__all__ = [
    "RateLimitRule",
    "RateLimitState",
    "RateLimitStrategy",
    "TokenBucketState",
    "WindowState",
    "RateLimitDecision",
    "RateLimitVerdict",
    "RateLimitStore",
    "RateLimitStoreError",
    "RateLimiter",
    "EndpointMatcher",
    "RateLimitPipeline",
]

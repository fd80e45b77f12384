"""Application lifecycle management.

This module handles application startup and shutdown events: it connects to
Redis, builds the rate limit pipeline and the circuit breaker registry from
settings and attaches them to ``app.state``.
"""

import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from redis.asyncio import Redis
from redis.exceptions import RedisError

from airavat.core.config.settings import settings
from airavat.core.logging import logger
from airavat.core.metrics import metrics_collector
from airavat.domain.rate_limiting import (
    RateLimiter,
    RateLimitPipeline,
    RateLimitRule,
    RateLimitStore,
    RateLimitStrategy,
)
from airavat.domain.resilience import CircuitBreakerRegistry
from airavat.infrastructure.circuit_state import RedisCircuitStateMirror
from airavat.infrastructure.rate_limiting import MemoryRateLimitStore, RedisRateLimitStore
from airavat.infrastructure.redis import close_redis_client, create_redis_client


def build_rate_limit_pipeline(
    store: RateLimitStore,
    fallback_store: Optional[RateLimitStore] = None,
    clock: Callable[[], float] = time.time,
) -> RateLimitPipeline:
    """Build the inbound pipeline from the ``RATE_LIMIT_*`` settings."""
    return RateLimitPipeline.from_rules(
        store,
        global_rule=settings.RATE_LIMIT_GLOBAL.to_rule("global") if settings.RATE_LIMIT_GLOBAL_ENABLED else None,
        burst_rule=settings.RATE_LIMIT_BURST.to_rule("burst") if settings.RATE_LIMIT_BURST_ENABLED else None,
        endpoint_rules={path: rule.to_rule(path) for path, rule in settings.RATE_LIMIT_ENDPOINTS.items()},
        tier_rules={tier: rule.to_rule(tier) for tier, rule in settings.RATE_LIMIT_TIERS.items()},
        fallback_store=fallback_store,
        strategy=RateLimitStrategy(settings.RATE_LIMIT_STRATEGY),
        clock=clock,
        fail_open=settings.RATE_LIMIT_FAIL_OPEN,
        key_prefix=settings.RATE_LIMIT_KEY_PREFIX,
        metrics=metrics_collector,
        default_tier=settings.RATE_LIMIT_DEFAULT_TIER,
        skip_paths=settings.RATE_LIMIT_SKIP_PATHS,
        skip_ips=settings.RATE_LIMIT_SKIP_IPS,
        skip_user_ids=settings.RATE_LIMIT_SKIP_USER_IDS,
    )


async def _check_redis(client: Redis) -> bool:
    try:
        await client.ping()
        return True
    except (RedisError, OSError) as e:
        logger.warning("redis_unavailable_on_startup", error=str(e))
        return False


def create_lifespan_manager(
    rate_limit_store: Optional[RateLimitStore] = None,
    clock: Callable[[], float] = time.time,
    redis_client: Optional[Redis] = None,
):
    """Create the application lifespan manager.

    Args:
        rate_limit_store: Counter store to use instead of the one selected
            by ``RATE_LIMIT_STORAGE``.
        clock: Epoch-seconds clock shared by limiters and breakers.
        redis_client: Client to use instead of one built from ``REDIS_URL``.

    Returns:
        AsyncContextManager: The lifespan manager for the FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager that handles startup and shutdown events.

        Redis being unreachable never prevents startup: limiters degrade
        according to the failure policy and the mirror is skipped.
        """
        # Startup
        redis = redis_client
        owns_redis = False
        if redis is None and rate_limit_store is None and settings.RATE_LIMIT_STORAGE == "redis":
            redis = create_redis_client()
            owns_redis = True
        if redis is not None:
            await _check_redis(redis)

        store = rate_limit_store
        if store is None:
            store = RedisRateLimitStore(redis, clock=clock) if redis is not None else MemoryRateLimitStore(clock=clock)
        fallback_store = None
        if settings.RATE_LIMIT_MEMORY_FALLBACK and not isinstance(store, MemoryRateLimitStore):
            fallback_store = MemoryRateLimitStore(clock=clock)

        pipeline = build_rate_limit_pipeline(store, fallback_store, clock)

        def rate_limiter_factory(rule: RateLimitRule) -> RateLimiter:
            return RateLimiter(
                rule,
                store,
                fallback_store,
                strategy=RateLimitStrategy(settings.RATE_LIMIT_STRATEGY),
                clock=clock,
                fail_open=settings.RATE_LIMIT_FAIL_OPEN,
                key_prefix=settings.RATE_LIMIT_KEY_PREFIX,
                metrics=metrics_collector,
            )

        mirror = None
        if settings.CIRCUIT_STATE_MIRROR_ENABLED and redis is not None:
            mirror = RedisCircuitStateMirror(redis, ttl_seconds=settings.CIRCUIT_STATE_TTL_SECONDS)
        registry = CircuitBreakerRegistry(
            settings.CIRCUIT_BREAKER_DEFAULTS,
            settings.CIRCUIT_BREAKERS,
            clock=clock,
            mirror=mirror,
            metrics=metrics_collector,
        )
        for name in settings.CIRCUIT_BREAKERS:
            registry.get(name)

        app.state.redis = redis
        app.state.rate_limit_store = store
        app.state.rate_limit_pipeline = pipeline
        app.state.rate_limiter_factory = rate_limiter_factory
        app.state.route_limiters = {}
        app.state.circuit_breakers = registry
        app.state.metrics = metrics_collector

        logger.info(
            "application_startup",
            env=settings.APP_ENV,
            version=settings.VERSION,
            rate_limit_store=type(store).__name__,
            memory_fallback=fallback_store is not None,
            circuit_breakers=len(registry.names()),
        )

        yield

        # Shutdown
        if owns_redis:
            await close_redis_client(redis)
        logger.info("application_shutdown", env=settings.APP_ENV)

    return lifespan

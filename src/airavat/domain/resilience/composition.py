"""Dependency-call wrapper: circuit breaker around retry around the call.

The breaker sees one outcome per wrapped call, after retrying has finished.
A call that needed two retries to succeed is a single success for the
breaker; a call whose retries were exhausted is a single failure. While the
circuit is open no attempt is made at all.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

from airavat.core.metrics import MetricsCollector
from airavat.domain.resilience.backoff import RetryPolicy
from airavat.domain.resilience.circuit_breaker import (
    NO_FALLBACK,
    CircuitBreaker,
    CircuitBreakerRegistry,
)
from airavat.domain.resilience.retry import DEFAULT_RETRY_POLICY, retry

T = TypeVar("T")


async def call_with_resilience(
    breaker: CircuitBreaker,
    operation: Callable[[int], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    fallback: Any = NO_FALLBACK,
    metrics: Optional[MetricsCollector] = None,
    **retry_options: Any,
) -> T:
    """Run ``operation(attempt)`` with retries, guarded by ``breaker``.

    ``retry_options`` are forwarded to :func:`airavat.domain.resilience.retry.retry`
    (``sleep``, ``clock``, ``rng``).
    """

    async def attempt_with_retries() -> T:
        return await retry(
            operation,
            policy or DEFAULT_RETRY_POLICY,
            name=breaker.name,
            metrics=metrics,
            **retry_options,
        )

    return await breaker.execute(attempt_with_retries, fallback=fallback)


class ResilientDependency:
    """Binds a named breaker and a retry policy for one external dependency.

    Usage:
        payments = ResilientDependency(registry, "payment-gateway", PAYMENT_RETRY_POLICY)
        charge = await payments.call(lambda attempt: gateway.charge(order))
    """

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        name: str,
        policy: Optional[RetryPolicy] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.name = name
        self.policy = policy or DEFAULT_RETRY_POLICY
        self.metrics = metrics

    @property
    def breaker(self) -> CircuitBreaker:
        return self.registry.get(self.name)

    async def call(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        fallback: Any = NO_FALLBACK,
        **retry_options: Any,
    ) -> T:
        return await call_with_resilience(
            self.breaker,
            operation,
            self.policy,
            fallback=fallback,
            metrics=self.metrics,
            **retry_options,
        )

    def get_status(self):
        return self.breaker.get_status()

"""
Outbound resilience: backoff, retry, circuit breaking and their composition.
"""

from .backoff import RetryPolicy, compute_delay
from .circuit_breaker import (
    NO_FALLBACK,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStateMirror,
    circuit_breaker,
)
from .composition import ResilientDependency, call_with_resilience
from .retry import (
    DATABASE_RETRY_POLICY,
    DEFAULT_RETRY_POLICY,
    EXTERNAL_API_RETRY_POLICY,
    HTTP_RETRY_POLICY,
    PAYMENT_RETRY_POLICY,
    batch_retry,
    is_retryable,
    is_transient_error,
    make_retryable,
    retry,
    retry_with_progressive_timeout,
    retryable,
)

__all__ = [
    "RetryPolicy",
    "compute_delay",
    "NO_FALLBACK",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStateMirror",
    "circuit_breaker",
    "ResilientDependency",
    "call_with_resilience",
    "DATABASE_RETRY_POLICY",
    "DEFAULT_RETRY_POLICY",
    "EXTERNAL_API_RETRY_POLICY",
    "HTTP_RETRY_POLICY",
    "PAYMENT_RETRY_POLICY",
    "batch_retry",
    "is_retryable",
    "is_transient_error",
    "make_retryable",
    "retry",
    "retry_with_progressive_timeout",
    "retryable",
]

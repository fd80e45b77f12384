from __future__ import annotations

"""Centralized, structured exception hierarchy for Airavat.

Each exception carries a machine-readable `code` for programmatic handling
and a human-readable `message` for logging. The hierarchy maps cleanly to
HTTP status codes in `airavat.core.handlers`:

- `RateLimitExceededError` -> 429 Too Many Requests
- `CircuitBreakerError`, `DependencyTimeoutError`, `RetryExhaustedError`
  -> 503 Service Unavailable
- any other `AiravatError` -> 500 Internal Server Error

Exhaustion and rejection errors always keep a reference to the last real
error so the root cause is never lost.
"""

from typing import TYPE_CHECKING, Final, Optional

if TYPE_CHECKING:
    from airavat.domain.rate_limiting.entities import RateLimitDecision

__all__: Final = [
    "AiravatError",
    "ConfigurationError",
    "RateLimitExceededError",
    "CircuitBreakerError",
    "DependencyTimeoutError",
    "RetryExhaustedError",
    "MaxRetriesExceededError",
    "RetryTimeoutError",
]


class AiravatError(Exception):
    """Base exception class for all custom errors in the application.

    Attributes:
        message (str): A human-readable error message, suitable for logging.
        code (str): A unique, machine-readable error code.
    """

    message: str
    code: str = "generic_error"

    def __init__(self, message: str, code: str = "generic_error"):
        self.message = message
        self.code = code
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(AiravatError):
    """Raised when a resilience component is built from invalid settings."""

    def __init__(self, message: str, code: str = "configuration_error"):
        super().__init__(message, code)


# ---------------------------------------------------------------------------
# Inbound protection (429 Too Many Requests)
# ---------------------------------------------------------------------------


class RateLimitExceededError(AiravatError):
    """Raised by the per-route rate limit dependency when a request is denied.

    `RateLimiter.consume` never raises this; a denial is a normal decision.
    The HTTP layer converts the decision into this error only where a route
    wants exception-based flow.
    """

    def __init__(
        self,
        decision: "RateLimitDecision",
        message: Optional[str] = None,
        code: str = "RATE_LIMIT_EXCEEDED",
    ):
        self.decision = decision
        if message is None:
            message = (
                f"Rate limit exceeded. Please retry after {decision.retry_after} seconds."
            )
        super().__init__(message, code)


# ---------------------------------------------------------------------------
# Outbound protection (503 Service Unavailable)
# ---------------------------------------------------------------------------


class CircuitBreakerError(AiravatError):
    """Raised when a circuit is open and the call carries no fallback.

    Callers should treat the dependency as temporarily unavailable and use
    `retry_after` (seconds) as guidance.
    """

    def __init__(
        self,
        dependency: str,
        retry_after: int = 0,
        message: Optional[str] = None,
        code: str = "circuit_open",
    ):
        self.dependency = dependency
        self.retry_after = retry_after
        if message is None:
            message = f"Service {dependency} is unavailable"
        super().__init__(message, code)


class DependencyTimeoutError(AiravatError):
    """Raised when a protected call exceeds the breaker's hard timeout."""

    def __init__(self, dependency: str, timeout: float, code: str = "dependency_timeout"):
        self.dependency = dependency
        self.timeout = timeout
        super().__init__(f"Call to {dependency} timed out after {timeout}s", code)


class RetryExhaustedError(AiravatError):
    """Base class for retry exhaustion.

    Both subclasses wrap the last underlying error in `original_error`. They
    describe why retrying stopped, not what went wrong with the dependency.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException],
        code: str = "retry_exhausted",
    ):
        self.original_error = original_error
        super().__init__(message, code)


class MaxRetriesExceededError(RetryExhaustedError):
    """Raised after the configured number of retries failed.

    `attempts` counts the retries made after the first attempt.
    """

    def __init__(self, message: str, original_error: Optional[BaseException], attempts: int):
        self.attempts = attempts
        super().__init__(message, original_error, code="max_retries_exceeded")


class RetryTimeoutError(RetryExhaustedError):
    """Raised when the overall retry budget (wall-clock) is spent."""

    def __init__(self, message: str, original_error: Optional[BaseException], elapsed: float):
        self.elapsed = elapsed
        super().__init__(message, original_error, code="retry_timeout")

"""Retry executor built on tenacity.

Drives an async operation through bounded attempts. Between attempts the
delay comes from :func:`airavat.domain.resilience.backoff.compute_delay`.

After every failed attempt the executor decides, in this order:

1. the wall-clock budget (``total_timeout``) is spent -> ``RetryTimeoutError``
2. more than ``max_retries`` retries were made -> ``MaxRetriesExceededError``
3. the error is terminal -> the original error propagates unmodified
4. otherwise wait and try again

Both exhaustion errors keep the last real error in ``original_error`` and
chain it as ``__cause__``.
"""

from __future__ import annotations

import asyncio
import errno
import inspect
import socket
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type

from airavat.core.exceptions import (
    DependencyTimeoutError,
    MaxRetriesExceededError,
    RetryTimeoutError,
)
from airavat.core.metrics import MetricsCollector
from airavat.domain.resilience.backoff import ErrorPattern, RetryPolicy, compute_delay

logger = structlog.get_logger(__name__)

T = TypeVar("T")

__all__ = [
    "retry",
    "retryable",
    "make_retryable",
    "batch_retry",
    "retry_with_progressive_timeout",
    "is_retryable",
    "is_transient_error",
    "DEFAULT_RETRY_POLICY",
    "DATABASE_RETRY_POLICY",
    "HTTP_RETRY_POLICY",
    "EXTERNAL_API_RETRY_POLICY",
    "PAYMENT_RETRY_POLICY",
]

_TRANSIENT_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNREFUSED, errno.EPIPE}
_TRANSIENT_TYPES: Tuple[type, ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
    DependencyTimeoutError,
    httpx.TimeoutException,
    httpx.NetworkError,
)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def _matches(error: BaseException, pattern: ErrorPattern) -> bool:
    if isinstance(pattern, type):
        return isinstance(error, pattern)

    if type(error).__name__ == pattern:
        return True

    code = getattr(error, "code", None)
    if isinstance(code, str) and code == pattern:
        return True

    err_no = getattr(error, "errno", None)
    if isinstance(err_no, int) and errno.errorcode.get(err_no) == pattern:
        return True

    return pattern.lower() in str(error).lower()


def _matches_any(error: BaseException, patterns: Sequence[ErrorPattern]) -> bool:
    return any(_matches(error, pattern) for pattern in patterns)


def is_transient_error(error: BaseException) -> bool:
    """Network resets, timeouts, DNS failures and 5xx/429 responses."""
    if isinstance(error, _TRANSIENT_TYPES):
        return True

    if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNOS:
        return True

    status = _status_code(error)
    return status is not None and (status == 429 or 500 <= status < 600)


def is_retryable(error: BaseException, policy: RetryPolicy) -> bool:
    """Classify ``error`` as retryable (True) or terminal (False).

    The deny-list always wins. A custom predicate, when present, decides
    next. An explicit allow-list makes everything outside it terminal.
    Without either, transient errors are retryable and anything else falls
    back to ``policy.retry_unclassified``.
    """
    if _matches_any(error, policy.non_retryable_errors):
        return False

    if policy.retryable_predicate is not None:
        return bool(policy.retryable_predicate(error))

    if policy.retryable_errors:
        return _matches_any(error, policy.retryable_errors)

    if is_transient_error(error):
        return True

    return policy.retry_unclassified


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class _Verdict:
    """Why the stop gate ended the retry loop."""

    TIMEOUT = "timeout"
    EXHAUSTED = "exhausted"
    TERMINAL = "terminal"


async def retry(
    operation: Callable[[int], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    rng=None,
    name: Optional[str] = None,
    metrics: Optional[MetricsCollector] = None,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or retrying must stop.

    Args:
        operation: Async callable receiving the 1-based attempt number.
        policy: Retry configuration; ``DEFAULT_RETRY_POLICY`` when omitted.
        sleep: Awaitable sleep used between attempts.
        clock: Monotonic clock used for the total timeout.
        rng: Optional ``random.Random`` for reproducible jitter.
        name: Label used in log events.
        metrics: Optional sink for retry counters.

    Returns:
        Whatever the first successful attempt returned.

    Raises:
        RetryTimeoutError: ``policy.total_timeout`` elapsed.
        MaxRetriesExceededError: ``policy.max_retries`` retries all failed.
        Exception: A terminal error, re-raised as is.
    """
    policy = policy or DEFAULT_RETRY_POLICY
    label = name or getattr(operation, "__name__", "operation")
    started = clock()
    verdict: Dict[str, Any] = {}
    pending_hook: List[Tuple[int, BaseException, float]] = []

    def _stop(retry_state: RetryCallState) -> bool:
        error = retry_state.outcome.exception()
        attempt = retry_state.attempt_number
        elapsed = clock() - started

        if elapsed > policy.total_timeout:
            verdict.update(kind=_Verdict.TIMEOUT, elapsed=elapsed)
            return True

        if attempt > policy.max_retries:
            verdict.update(kind=_Verdict.EXHAUSTED, attempt=attempt)
            return True

        if not is_retryable(error, policy):
            verdict.update(kind=_Verdict.TERMINAL)
            return True

        return False

    def _wait(retry_state: RetryCallState) -> float:
        return compute_delay(retry_state.attempt_number, policy, rng)

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep
        logger.info(
            "retry_scheduled",
            operation=label,
            attempt=retry_state.attempt_number,
            delay=round(delay, 3),
            error=str(error),
            error_type=type(error).__name__,
        )
        if metrics is not None:
            metrics.record_retry(label, "scheduled")
        if policy.on_retry is not None:
            pending_hook.append((retry_state.attempt_number, error, delay))

    async def _sleep(delay: float) -> None:
        while pending_hook:
            outcome = policy.on_retry(*pending_hook.pop(0))
            if inspect.isawaitable(outcome):
                await outcome
        await sleep(delay)

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(Exception),
        stop=_stop,
        wait=_wait,
        before_sleep=_before_sleep,
        sleep=_sleep,
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await operation(attempt.retry_state.attempt_number)
    except RetryError as exc:
        last_error = exc.last_attempt.exception()

    kind = verdict.get("kind")

    if kind == _Verdict.TIMEOUT:
        elapsed = verdict["elapsed"]
        logger.warning(
            "retry_timeout", operation=label, elapsed=round(elapsed, 3), error=str(last_error)
        )
        if metrics is not None:
            metrics.record_retry(label, "timeout")
        raise RetryTimeoutError(
            f"Operation timed out after {elapsed:.3f}s", last_error, elapsed
        ) from last_error

    if kind == _Verdict.EXHAUSTED:
        attempts = verdict["attempt"] - 1
        logger.warning("retry_exhausted", operation=label, attempts=attempts, error=str(last_error))
        if metrics is not None:
            metrics.record_retry(label, "exhausted")
        raise MaxRetriesExceededError(
            f"Max retries ({attempts}) exceeded", last_error, attempts
        ) from last_error

    # Terminal errors leave the loop untouched.
    logger.debug("retry_aborted_terminal_error", operation=label, error=str(last_error))
    raise last_error


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_retryable(
    func: Callable[..., Awaitable[T]], policy: Optional[RetryPolicy] = None
) -> Callable[..., Awaitable[T]]:
    """Wrap ``func`` so each call is retried under ``policy``."""

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await retry(lambda _attempt: func(*args, **kwargs), policy, name=func.__name__)

    return wrapper


def retryable(
    policy: Optional[RetryPolicy] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`make_retryable`.

    Usage:
        @retryable(HTTP_RETRY_POLICY)
        async def fetch_rates(): ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        return make_retryable(func, policy)

    return decorator


async def batch_retry(
    operations: Sequence[Callable[[int], Awaitable[Any]]],
    policy: Optional[RetryPolicy] = None,
    *,
    concurrency: int = 5,
    stop_on_error: bool = False,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Tuple[List[Any], Dict[int, BaseException]]:
    """Retry many operations, ``concurrency`` at a time.

    Returns ``(results, errors)``: ``results[i]`` is the value of operation
    ``i`` or ``None`` if it failed, and ``errors`` maps failed indices to the
    error raised. With ``stop_on_error`` the first failure in a batch is
    raised once that batch has settled.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    results: List[Any] = [None] * len(operations)
    errors: Dict[int, BaseException] = {}

    for start in range(0, len(operations), concurrency):
        batch = operations[start : start + concurrency]
        outcomes = await asyncio.gather(
            *(retry(op, policy, sleep=sleep) for op in batch), return_exceptions=True
        )
        for offset, outcome in enumerate(outcomes):
            index = start + offset
            if isinstance(outcome, BaseException):
                errors[index] = outcome
                if stop_on_error:
                    raise outcome
            else:
                results[index] = outcome

    return results, errors


async def retry_with_progressive_timeout(
    operation: Callable[[int], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    timeouts: Sequence[float] = (5.0, 10.0, 30.0),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Retry with a per-attempt timeout that grows with each attempt.

    Attempt ``n`` is bounded by ``timeouts[n - 1]``; attempts past the end of
    the sequence reuse its last entry. A timed-out attempt is cancelled and
    counts as a retryable failure.
    """
    if not timeouts:
        raise ValueError("timeouts must not be empty")

    async def bounded(attempt: int) -> T:
        limit = timeouts[min(attempt - 1, len(timeouts) - 1)]
        try:
            return await asyncio.wait_for(operation(attempt), timeout=limit)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"Attempt {attempt} timed out after {limit}s") from exc

    return await retry(bounded, policy, sleep=sleep, name=getattr(operation, "__name__", None))


# ---------------------------------------------------------------------------
# Presets per call category
# ---------------------------------------------------------------------------


def _log_external_api_retry(attempt: int, error: BaseException, delay: float) -> None:
    logger.warning("external_api_retry", attempt=attempt, error=str(error), delay=round(delay, 3))


DEFAULT_RETRY_POLICY = RetryPolicy()

DATABASE_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    initial_delay=0.1,
    max_delay=5.0,
    retryable_errors=(
        ConnectionRefusedError,
        "ECONNREFUSED",
        "connection refused",
        "connection lost",
        "deadlock",
        "lock wait timeout",
    ),
    non_retryable_errors=(
        "unique constraint",
        "foreign key constraint",
        "validation error",
    ),
)

HTTP_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    initial_delay=1.0,
    max_delay=10.0,
    retryable_errors=(
        ConnectionResetError,
        socket.gaierror,
        httpx.TimeoutException,
        httpx.NetworkError,
        TimeoutError,
        "ECONNRESET",
        "ETIMEDOUT",
        "ENOTFOUND",
        "socket hang up",
    ),
)

EXTERNAL_API_RETRY_POLICY = RetryPolicy(
    max_retries=5,
    initial_delay=2.0,
    max_delay=30.0,
    jitter_enabled=True,
    on_retry=_log_external_api_retry,
)

PAYMENT_RETRY_POLICY = RetryPolicy(
    max_retries=2,
    initial_delay=1.0,
    max_delay=8.0,
    retryable_predicate=is_transient_error,
    non_retryable_errors=("card_declined", "insufficient_funds", "duplicate"),
    retry_unclassified=False,
)

"""
Retry Policy and Backoff Calculator

Immutable retry configuration plus the pure delay function used between
attempts. Delays are expressed in seconds.

The delay for attempt ``n`` (1-based) is::

    base = initial_delay * backoff_multiplier ** (n - 1), capped at max_delay

With jitter enabled a symmetric perturbation of ``± jitter_factor * base`` is
applied and the result is clamped to ``[0, max_delay]``. Pass a seeded
``random.Random`` for reproducible sequences.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union

ErrorPattern = Union[Type[BaseException], str]
RetryObserver = Callable[[int, BaseException, float], Optional[Awaitable[Any]]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Immutable per-call retry configuration.

    Business Rules:
    - max_retries counts additional attempts after the first one
    - delays are non-negative and max_delay caps every computed delay
    - backoff_multiplier of 1.0 gives a constant delay
    - jitter_factor is a fraction of the base delay in [0, 1]
    - total_timeout bounds the wall-clock time across all attempts

    Classification fields:
    - non_retryable_errors: patterns that stop retrying immediately
    - retryable_errors: explicit allow-list; when non-empty, anything not
      matching it is terminal
    - retryable_predicate: custom classifier consulted after the deny-list
    - retry_unclassified: what to do with errors no rule recognised
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_enabled: bool = True
    jitter_factor: float = 0.5
    total_timeout: float = 60.0
    retryable_errors: Tuple[ErrorPattern, ...] = ()
    non_retryable_errors: Tuple[ErrorPattern, ...] = ()
    retryable_predicate: Optional[Callable[[BaseException], bool]] = None
    retry_unclassified: bool = True
    on_retry: Optional[RetryObserver] = field(default=None, compare=False)

    def __post_init__(self):
        """Validate policy configuration at construction time"""
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        if self.initial_delay < 0:
            raise ValueError("initial_delay cannot be negative")

        if self.max_delay < 0:
            raise ValueError("max_delay cannot be negative")

        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")

        if self.total_timeout <= 0:
            raise ValueError("total_timeout must be positive")

        for pattern in (*self.retryable_errors, *self.non_retryable_errors):
            if isinstance(pattern, str):
                continue
            if not (isinstance(pattern, type) and issubclass(pattern, BaseException)):
                raise ValueError(f"Unsupported error pattern: {pattern!r}")


def compute_delay(
    attempt: int, policy: RetryPolicy, rng: Optional[random.Random] = None
) -> float:
    """Return the delay in seconds to wait after failed attempt ``attempt``.

    Args:
        attempt: The 1-based number of the attempt that just failed.
        policy: The retry policy supplying the backoff parameters.
        rng: Optional random source; the module-level generator is used
            when omitted.

    Returns:
        A non-negative delay no greater than ``policy.max_delay``.
    """
    if attempt < 1:
        raise ValueError("attempt must be a positive integer")

    delay = policy.initial_delay * policy.backoff_multiplier ** (attempt - 1)
    delay = min(delay, policy.max_delay)

    if policy.jitter_enabled and policy.jitter_factor > 0:
        jitter_range = delay * policy.jitter_factor
        delay += (rng or random).uniform(-jitter_range, jitter_range)

    return min(max(0.0, delay), policy.max_delay)

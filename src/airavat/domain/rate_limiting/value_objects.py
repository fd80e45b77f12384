"""
Rate Limiting Value Objects

Immutable value objects for the rate limiting domain.

Value Objects:
- RateLimitStrategy: Counting algorithm used by a limiter
- RateLimitRule: Limit configuration for one scope
- WindowState: Window counter state as reported by a store
- TokenBucketState: Token bucket state as persisted in a store

Design Principles:
- Immutability: All value objects are immutable after creation
- Validation: Business rules enforced at construction time
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class RateLimitStrategy(Enum):
    """
    Supported counting strategies.

    - FIXED_WINDOW: counter with TTL equal to the window, plus an optional
      block penalty once the limit is exceeded
    - SLIDING_WINDOW: timestamp log over the trailing window; no boundary
      bursts, same block penalty as the fixed window
    - TOKEN_BUCKET: continuous refill at points/window, allows short bursts
    """
    FIXED_WINDOW = "fixed-window"
    SLIDING_WINDOW = "sliding-window"
    TOKEN_BUCKET = "token-bucket"


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    """
    Immutable limit configuration for one scope.

    ``scope`` names the layer the rule belongs to: ``global``, ``burst``,
    ``endpoint:<path>`` or ``tier:<name>``.

    Business Rules:
    - points must be positive
    - window_seconds must be positive
    - block_duration_seconds cannot be negative; 0 disables the penalty
    """
    scope: str
    points: int
    window_seconds: int
    block_duration_seconds: int = 0

    def __post_init__(self):
        """Validate rule configuration at construction time"""
        if not self.scope:
            raise ValueError("scope cannot be empty")

        if self.points <= 0:
            raise ValueError("points must be positive")

        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        if self.block_duration_seconds < 0:
            raise ValueError("block_duration_seconds cannot be negative")

    @property
    def refill_rate(self) -> float:
        """Tokens regained per second by a token bucket using this rule"""
        return self.points / self.window_seconds

    @property
    def ttl_seconds(self) -> int:
        """How long state for this rule may live in a store"""
        return self.window_seconds + self.block_duration_seconds

    def with_scope(self, scope: str) -> RateLimitRule:
        return RateLimitRule(
            scope=scope,
            points=self.points,
            window_seconds=self.window_seconds,
            block_duration_seconds=self.block_duration_seconds,
        )


@dataclass(frozen=True, slots=True)
class WindowState:
    """Counter state after one window increment (fixed or sliding).

    ``resets_in`` is the number of seconds until consumption is possible
    again: the rest of the window, or the rest of the block when blocked.
    """
    consumed: int
    resets_in: float
    blocked: bool = False


@dataclass(frozen=True, slots=True)
class TokenBucketState:
    tokens: float
    last_refill: float

    def __post_init__(self):
        if self.tokens < 0:
            raise ValueError("tokens cannot be negative")


RateLimitState = Union[WindowState, TokenBucketState]

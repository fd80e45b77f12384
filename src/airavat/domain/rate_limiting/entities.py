"""Rate Limiting Domain Entities

Entities:
- RateLimitDecision: Outcome of one ``consume`` call
- RateLimitVerdict: Outcome of a multi-scope pipeline check
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of consuming from one scope.

    A denial is a normal outcome, never an exception. ``remaining`` is never
    negative. ``retry_after`` is a whole number of seconds until the counter
    (or block) resets and is populated for allowed decisions too, so every
    layer can set complete headers.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: int
    scope: str

    # Error handling
    fallback_used: bool = False
    error_details: Optional[str] = None

    def __post_init__(self):
        if self.remaining < 0:
            object.__setattr__(self, "remaining", 0)

    @property
    def is_blocked(self) -> bool:
        """Check if the request was blocked"""
        return not self.allowed

    def to_http_headers(self) -> Dict[str, str]:
        """Convert the decision to HTTP headers.

        - X-RateLimit-Limit: The rate limit ceiling for the scope
        - X-RateLimit-Remaining: The number of requests left for the window
        - X-RateLimit-Reset: ISO-8601 time at which the window resets
        - Retry-After: Number of seconds until the window resets
        """
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
            "Retry-After": str(self.retry_after),
        }

    @classmethod
    def from_counter(
        cls,
        *,
        allowed: bool,
        limit: int,
        remaining: int,
        resets_in: float,
        scope: str,
        now: float,
    ) -> RateLimitDecision:
        """Build a decision from a store reply; ``now`` is epoch seconds."""
        resets_in = max(0.0, resets_in)
        return cls(
            allowed=allowed,
            limit=limit,
            remaining=remaining if allowed else 0,
            reset_at=datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=resets_in),
            retry_after=math.ceil(resets_in),
            scope=scope,
        )

    @classmethod
    def fallback_result(
        cls, limit: int, scope: str, error_details: str, now: float
    ) -> RateLimitDecision:
        """Decision returned when the store failed and the limiter fails open"""
        return cls(
            allowed=True,  # Fail open for availability
            limit=limit,
            remaining=limit,
            reset_at=datetime.fromtimestamp(now, tz=timezone.utc),
            retry_after=0,
            scope=scope,
            fallback_used=True,
            error_details=error_details,
        )

    @classmethod
    def unavailable_result(
        cls, limit: int, scope: str, error_details: str, now: float, retry_after: int = 1
    ) -> RateLimitDecision:
        """Decision returned when the store failed and the limiter fails closed"""
        return cls(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at=datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=retry_after),
            retry_after=retry_after,
            scope=scope,
            fallback_used=True,
            error_details=error_details,
        )

    def as_fallback(self, error_details: str) -> RateLimitDecision:
        return replace(self, fallback_used=True, error_details=error_details)


@dataclass
class RateLimitVerdict:
    """Outcome of checking a request against the ordered scope layers.

    ``decisions`` holds every layer that was evaluated, in order. When a
    layer denied, it is the last entry and ``denied_by`` names it.
    """

    decisions: List[RateLimitDecision] = field(default_factory=list)
    label: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return all(decision.allowed for decision in self.decisions)

    @property
    def denied_by(self) -> Optional[RateLimitDecision]:
        for decision in self.decisions:
            if not decision.allowed:
                return decision
        return None

    @property
    def headers(self) -> Dict[str, str]:
        """Headers of the last evaluated layer; each layer overwrites the previous."""
        headers: Dict[str, str] = {}
        for decision in self.decisions:
            headers.update(decision.to_http_headers())
        return headers

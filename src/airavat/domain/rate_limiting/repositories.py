"""
Rate Limiting Domain Repositories

Contract for the counter store shared by all rate limiters. Implementations
live in ``airavat.infrastructure.rate_limiting``: Redis for multi-process
deployments and an in-memory map for single-instance deployments and as
insurance when Redis is unreachable.

Keys are opaque strings of the form ``<prefix>:<scope>:<identity>``; the
store never interprets them.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .value_objects import RateLimitRule, TokenBucketState, WindowState


class RateLimitStore(ABC):
    """
    Counter store used by :class:`airavat.domain.rate_limiting.services.RateLimiter`.

    Implementations must make ``hit_window`` and ``hit_sliding_window``
    atomic per key. Token bucket state is read and written separately;
    concurrent writers may lose an update, which the bucket tolerates.
    """

    @abstractmethod
    async def hit_window(self, key: str, rule: RateLimitRule, cost: int = 1) -> WindowState:
        """
        Add ``cost`` to the fixed-window counter for ``key``.

        The counter expires ``rule.window_seconds`` after its first hit. Once
        the counter exceeds ``rule.points`` and the rule carries a block
        duration, the key stays blocked for that long even after the window
        expires; while blocked the counter is not incremented.

        Args:
            key: The storage key.
            rule: Limits to enforce.
            cost: Points to consume.

        Returns:
            WindowState after the increment.

        Raises:
            RateLimitStoreError: When the store cannot be reached.
        """

    @abstractmethod
    async def hit_sliding_window(self, key: str, rule: RateLimitRule, cost: int = 1) -> WindowState:
        """
        Record ``cost`` hits for ``key`` in a log over the trailing
        ``rule.window_seconds``.

        Hits older than the window are discarded first. A request that would
        take the log past ``rule.points`` is not recorded; ``consumed`` then
        exceeds ``rule.points`` and ``resets_in`` is the time until enough
        hits age out to admit it. Block penalties apply as for
        ``hit_window``.

        Raises:
            RateLimitStoreError: When the store cannot be reached.
        """

    @abstractmethod
    async def get_bucket(self, key: str) -> Optional[TokenBucketState]:
        """Return the token bucket for ``key``, or None if it does not exist."""

    @abstractmethod
    async def save_bucket(self, key: str, state: TokenBucketState, ttl_seconds: int) -> None:
        """Persist the token bucket for ``key`` for ``ttl_seconds``."""

    @abstractmethod
    async def reset(self, key: str) -> bool:
        """
        Delete all state for ``key``, including any block.

        Returns:
            True if something was deleted.
        """

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """
        Report store health.

        Returns:
            A dict with at least ``status`` (``healthy`` or ``unhealthy``).
        """


# Exception classes for store operations
class RateLimitStoreError(Exception):
    """Raised when the counter store cannot serve a request"""
    pass

"""Counter store implementations for the rate limiting domain."""

from .memory_store import MemoryRateLimitStore
from .redis_store import RedisRateLimitStore

__all__ = ["MemoryRateLimitStore", "RedisRateLimitStore"]

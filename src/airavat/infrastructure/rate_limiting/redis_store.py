"""
Redis-backed counter store.

Fixed and sliding windows each run as a single Lua script so the count,
expiry and block penalty are applied atomically per key. The sliding window
is a sorted set of hit timestamps (milliseconds) trimmed to the window. Token buckets are stored as JSON
documents with a TTL; concurrent writers may overwrite each other, which
only ever loses a refill or a deduction for one request.

Key layout for a limiter key ``K``:
- ``K``: window counter, expires with the window
- ``K:block``: present while the key serves a block penalty
- ``K:log``: sliding window hit log
- ``K:bucket``: token bucket document
"""

import json
import time
import uuid
from typing import Any, Callable, Dict, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from airavat.domain.rate_limiting.repositories import RateLimitStore, RateLimitStoreError
from airavat.domain.rate_limiting.value_objects import RateLimitRule, TokenBucketState, WindowState

logger = structlog.get_logger(__name__)

# KEYS[1] counter, KEYS[2] block marker
# ARGV[1] cost, ARGV[2] window ms, ARGV[3] points, ARGV[4] block ms
# Returns {consumed, ms until reset, blocked}
FIXED_WINDOW_SCRIPT = """
local counter_key = KEYS[1]
local block_key = KEYS[2]
local cost = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local points = tonumber(ARGV[3])
local block_ms = tonumber(ARGV[4])

local blocked_ttl = redis.call('PTTL', block_key)
if blocked_ttl > 0 then
    local current = tonumber(redis.call('GET', counter_key)) or (points + 1)
    return {current, blocked_ttl, 1}
end

local consumed = redis.call('INCRBY', counter_key, cost)
local ttl = redis.call('PTTL', counter_key)
if ttl < 0 then
    redis.call('PEXPIRE', counter_key, window_ms)
    ttl = window_ms
end

if consumed > points and block_ms > 0 then
    redis.call('SET', block_key, consumed, 'PX', block_ms)
    return {consumed, block_ms, 1}
end

return {consumed, ttl, 0}
"""

# KEYS[1] hit log, KEYS[2] block marker
# ARGV[1] now ms, ARGV[2] window ms, ARGV[3] points, ARGV[4] cost, ARGV[5] block ms, ARGV[6] member id
# Returns {consumed, ms until reset, blocked}
SLIDING_WINDOW_SCRIPT = """
local log_key = KEYS[1]
local block_key = KEYS[2]
local now = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local points = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])
local block_ms = tonumber(ARGV[5])
local member = ARGV[6]

local blocked_ttl = redis.call('PTTL', block_key)
if blocked_ttl > 0 then
    return {points + cost, blocked_ttl, 1}
end

redis.call('ZREMRANGEBYSCORE', log_key, '-inf', now - window_ms)
local count = redis.call('ZCARD', log_key)
local consumed = count + cost

if consumed > points then
    if block_ms > 0 then
        redis.call('SET', block_key, consumed, 'PX', block_ms)
        return {consumed, block_ms, 1}
    end
    local index = consumed - points - 1
    if index >= count then
        return {consumed, window_ms, 0}
    end
    local freed = redis.call('ZRANGE', log_key, index, index, 'WITHSCORES')
    return {consumed, tonumber(freed[2]) + window_ms - now, 0}
end

for i = 1, cost do
    redis.call('ZADD', log_key, now, member .. ':' .. i)
end
redis.call('PEXPIRE', log_key, window_ms)
local oldest = redis.call('ZRANGE', log_key, 0, 0, 'WITHSCORES')
return {consumed, tonumber(oldest[2]) + window_ms - now, 0}
"""


class RedisRateLimitStore(RateLimitStore):
    """
    A concrete implementation of RateLimitStore using Redis for persistence.

    All Redis failures surface as ``RateLimitStoreError`` so the limiter can
    apply its failure policy.
    """

    def __init__(self, redis_client: Redis, clock: Callable[[], float] = time.time):
        """
        Args:
            redis_client (Redis): The async Redis client instance.
            clock: Epoch-seconds clock stamping sliding window hits.
        """
        self.redis = redis_client
        self._clock = clock
        self._fixed_window = redis_client.register_script(FIXED_WINDOW_SCRIPT)
        self._sliding_window = redis_client.register_script(SLIDING_WINDOW_SCRIPT)

    async def hit_window(self, key: str, rule: RateLimitRule, cost: int = 1) -> WindowState:
        try:
            consumed, ms_left, blocked = await self._fixed_window(
                keys=[key, f"{key}:block"],
                args=[
                    cost,
                    rule.window_seconds * 1000,
                    rule.points,
                    rule.block_duration_seconds * 1000,
                ],
            )
        except RedisError as e:
            raise RateLimitStoreError(f"fixed window increment failed: {e}") from e

        return WindowState(consumed=int(consumed), resets_in=int(ms_left) / 1000, blocked=bool(int(blocked)))

    async def hit_sliding_window(self, key: str, rule: RateLimitRule, cost: int = 1) -> WindowState:
        try:
            consumed, ms_left, blocked = await self._sliding_window(
                keys=[f"{key}:log", f"{key}:block"],
                args=[
                    int(self._clock() * 1000),
                    rule.window_seconds * 1000,
                    rule.points,
                    cost,
                    rule.block_duration_seconds * 1000,
                    uuid.uuid4().hex,
                ],
            )
        except RedisError as e:
            raise RateLimitStoreError(f"sliding window increment failed: {e}") from e

        return WindowState(consumed=int(consumed), resets_in=int(ms_left) / 1000, blocked=bool(int(blocked)))

    async def get_bucket(self, key: str) -> Optional[TokenBucketState]:
        try:
            data = await self.redis.get(f"{key}:bucket")
        except RedisError as e:
            raise RateLimitStoreError(f"token bucket read failed: {e}") from e

        if data is None:
            return None
        try:
            state = json.loads(data)
            return TokenBucketState(tokens=float(state["tokens"]), last_refill=float(state["last_refill"]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("token_bucket_state_corrupt", key=key)
            return None

    async def save_bucket(self, key: str, state: TokenBucketState, ttl_seconds: int) -> None:
        document = json.dumps({"tokens": state.tokens, "last_refill": state.last_refill})
        try:
            await self.redis.set(f"{key}:bucket", document, ex=max(1, ttl_seconds))
        except RedisError as e:
            raise RateLimitStoreError(f"token bucket write failed: {e}") from e

    async def reset(self, key: str) -> bool:
        try:
            deleted = await self.redis.delete(key, f"{key}:block", f"{key}:bucket", f"{key}:log")
        except RedisError as e:
            raise RateLimitStoreError(f"reset failed: {e}") from e
        return deleted > 0

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check on the rate limiting storage.
        """
        try:
            start = time.perf_counter()
            await self.redis.ping()
            latency = (time.perf_counter() - start) * 1000
            return {"status": "healthy", "backend": "redis", "latency_ms": round(latency, 2)}
        except (RedisError, OSError) as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {"status": "unhealthy", "backend": "redis", "error": str(e)}

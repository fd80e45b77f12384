"""
In-memory counter store.

Same key scheme and semantics as the Redis store, scoped to one process.
Used as the primary store for single-instance deployments and tests, and as
the insurance store when Redis is unreachable.

Entries expire lazily on access. Once the map holds ``max_keys`` entries a
sweep drops every expired one, at most once per ``sweep_interval`` seconds;
if the map is still over ``max_keys`` the oldest counters are evicted. Block
penalties are never evicted. All methods complete without awaiting, so each
call is atomic with respect to other coroutines.
"""

import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from airavat.domain.rate_limiting.repositories import RateLimitStore
from airavat.domain.rate_limiting.value_objects import RateLimitRule, TokenBucketState, WindowState


class MemoryRateLimitStore(RateLimitStore):
    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_keys: int = 10000,
        sweep_interval: float = 1.0,
    ):
        self._clock = clock
        self.max_keys = max_keys
        self.sweep_interval = sweep_interval
        self._last_sweep: Optional[float] = None
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._blocks: Dict[str, float] = {}
        self._buckets: Dict[str, Tuple[TokenBucketState, float]] = {}
        self._logs: Dict[str, Tuple[Deque[float], float]] = {}

    async def hit_window(self, key: str, rule: RateLimitRule, cost: int = 1) -> WindowState:
        now = self._clock()
        self._maybe_sweep(now)

        blocked_for = self._blocked_for(key, now)
        if blocked_for is not None:
            consumed = self._windows.get(key, (rule.points + 1, 0.0))[0]
            return WindowState(consumed=consumed, resets_in=blocked_for, blocked=True)

        consumed, expires_at = self._windows.get(key, (0, 0.0))
        if expires_at <= now:
            consumed, expires_at = 0, now + rule.window_seconds

        consumed += cost
        self._windows[key] = (consumed, expires_at)

        if consumed > rule.points and rule.block_duration_seconds > 0:
            self._blocks[key] = now + rule.block_duration_seconds
            return WindowState(consumed=consumed, resets_in=rule.block_duration_seconds, blocked=True)

        return WindowState(consumed=consumed, resets_in=expires_at - now)

    async def hit_sliding_window(self, key: str, rule: RateLimitRule, cost: int = 1) -> WindowState:
        now = self._clock()
        self._maybe_sweep(now)

        blocked_for = self._blocked_for(key, now)
        if blocked_for is not None:
            return WindowState(consumed=rule.points + cost, resets_in=blocked_for, blocked=True)

        entry = self._logs.get(key)
        hits: Deque[float] = entry[0] if entry is not None else deque()
        window_start = now - rule.window_seconds
        while hits and hits[0] <= window_start:
            hits.popleft()

        consumed = len(hits) + cost
        if consumed > rule.points:
            if rule.block_duration_seconds > 0:
                self._blocks[key] = now + rule.block_duration_seconds
                return WindowState(consumed=consumed, resets_in=rule.block_duration_seconds, blocked=True)
            # The request fits once this many of the oldest hits have aged out.
            needed = consumed - rule.points
            if needed > len(hits):
                return WindowState(consumed=consumed, resets_in=rule.window_seconds)
            return WindowState(consumed=consumed, resets_in=hits[needed - 1] + rule.window_seconds - now)

        hits.extend([now] * cost)
        self._logs[key] = (hits, now + rule.window_seconds)
        return WindowState(consumed=consumed, resets_in=hits[0] + rule.window_seconds - now)

    async def get_bucket(self, key: str) -> Optional[TokenBucketState]:
        entry = self._buckets.get(key)
        if entry is None:
            return None
        state, expires_at = entry
        if expires_at <= self._clock():
            del self._buckets[key]
            return None
        return state

    async def save_bucket(self, key: str, state: TokenBucketState, ttl_seconds: int) -> None:
        now = self._clock()
        self._maybe_sweep(now)
        self._buckets[key] = (state, now + max(1, ttl_seconds))

    async def reset(self, key: str) -> bool:
        found = False
        for table in (self._windows, self._blocks, self._buckets, self._logs):
            found = table.pop(key, None) is not None or found
        return found

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "backend": "memory", "keys": self._size()}

    def _blocked_for(self, key: str, now: float) -> Optional[float]:
        blocked_until = self._blocks.get(key)
        if blocked_until is None:
            return None
        if blocked_until > now:
            return blocked_until - now
        del self._blocks[key]
        return None

    def _size(self) -> int:
        return len(self._windows) + len(self._blocks) + len(self._buckets) + len(self._logs)

    def _maybe_sweep(self, now: float) -> None:
        if self._size() < self.max_keys:
            return
        if self._last_sweep is not None and now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now

        self._windows = {k: v for k, v in self._windows.items() if v[1] > now}
        self._blocks = {k: v for k, v in self._blocks.items() if v > now}
        self._buckets = {k: v for k, v in self._buckets.items() if v[1] > now}
        self._logs = {k: v for k, v in self._logs.items() if v[1] > now}

        overflow = self._size() - self.max_keys
        for table in (self._buckets, self._logs, self._windows):
            if overflow <= 0:
                break
            for key in list(table)[:overflow]:
                del table[key]
                overflow -= 1

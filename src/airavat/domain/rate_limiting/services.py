"""
Rate Limiting Domain Services

Services:
- RateLimiter: consumes points for one scope against a counter store
- EndpointMatcher: resolves a request path to an endpoint rule
- RateLimitPipeline: checks a request against the ordered scope layers
  global -> burst -> endpoint -> tier

Failure policy: ``RateLimiter.consume`` never raises. When the store fails it
logs the degradation and either consumes from an in-memory insurance store,
allows the request (fail open, the default) or denies it (fail closed).
"""

from __future__ import annotations

import math
import re
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple

import structlog

from airavat.core.metrics import MetricsCollector

from .entities import RateLimitDecision, RateLimitVerdict
from .repositories import RateLimitStore
from .value_objects import RateLimitRule, RateLimitStrategy, TokenBucketState

logger = structlog.get_logger(__name__)


class RateLimiter:
    """
    Per-scope limiter.

    Args:
        rule: Limits for this scope.
        store: Primary counter store.
        fallback_store: Optional in-process store used when ``store`` fails.
        strategy: Counting strategy.
        clock: Epoch-seconds clock; injectable for tests.
        fail_open: Allow requests when no store can answer.
        key_prefix: Namespace for storage keys.
        metrics: Optional metrics sink.
    """

    def __init__(
        self,
        rule: RateLimitRule,
        store: RateLimitStore,
        fallback_store: Optional[RateLimitStore] = None,
        *,
        strategy: RateLimitStrategy = RateLimitStrategy.FIXED_WINDOW,
        clock: Callable[[], float] = time.time,
        fail_open: bool = True,
        key_prefix: str = "ratelimit",
        metrics: Optional[MetricsCollector] = None,
    ):
        self.rule = rule
        self.store = store
        self.fallback_store = fallback_store
        self.strategy = strategy
        self.fail_open = fail_open
        self.key_prefix = key_prefix
        self._clock = clock
        self._metrics = metrics

    def key_for(self, identity: str) -> str:
        return f"{self.key_prefix}:{self.rule.scope}:{identity}"

    async def consume(self, identity: str, cost: int = 1) -> RateLimitDecision:
        """
        Consume ``cost`` points for ``identity``.

        Returns:
            The decision. Denial is reported through ``allowed``; store
            failures are absorbed according to the failure policy.
        """
        if cost < 1:
            raise ValueError("cost must be a positive integer")

        key = self.key_for(identity)
        try:
            decision = await self._consume(self.store, key, cost)
        except Exception as e:
            decision = await self._degrade(key, cost, e)

        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                scope=self.rule.scope,
                key=key,
                retry_after=decision.retry_after,
            )
        if self._metrics is not None:
            self._metrics.record_rate_limit_decision(
                self.rule.scope, decision.allowed, decision.fallback_used
            )
        return decision

    async def reset(self, identity: str) -> bool:
        """Clear the counter (and any block) for ``identity`` in every store."""
        key = self.key_for(identity)
        deleted = await self.store.reset(key)
        if self.fallback_store is not None:
            deleted = await self.fallback_store.reset(key) or deleted
        logger.info("rate_limit_reset", scope=self.rule.scope, key=key, deleted=deleted)
        return deleted

    async def _degrade(self, key: str, cost: int, error: Exception) -> RateLimitDecision:
        logger.error(
            "rate_limit_store_unavailable",
            scope=self.rule.scope,
            key=key,
            error=str(error),
            fallback="memory" if self.fallback_store is not None else None,
            fail_open=self.fail_open,
        )
        if self.fallback_store is not None:
            try:
                decision = await self._consume(self.fallback_store, key, cost)
                return decision.as_fallback(str(error))
            except Exception as fallback_error:
                logger.error(
                    "rate_limit_fallback_store_failed",
                    scope=self.rule.scope,
                    key=key,
                    error=str(fallback_error),
                )

        now = self._clock()
        if self.fail_open:
            return RateLimitDecision.fallback_result(self.rule.points, self.rule.scope, str(error), now)
        return RateLimitDecision.unavailable_result(self.rule.points, self.rule.scope, str(error), now)

    async def _consume(self, store: RateLimitStore, key: str, cost: int) -> RateLimitDecision:
        if self.strategy is RateLimitStrategy.TOKEN_BUCKET:
            return await self._consume_bucket(store, key, cost)
        return await self._consume_window(store, key, cost)

    async def _consume_window(self, store: RateLimitStore, key: str, cost: int) -> RateLimitDecision:
        if self.strategy is RateLimitStrategy.SLIDING_WINDOW:
            state = await store.hit_sliding_window(key, self.rule, cost)
        else:
            state = await store.hit_window(key, self.rule, cost)
        allowed = not state.blocked and state.consumed <= self.rule.points
        return RateLimitDecision.from_counter(
            allowed=allowed,
            limit=self.rule.points,
            remaining=self.rule.points - state.consumed,
            resets_in=state.resets_in,
            scope=self.rule.scope,
            now=self._clock(),
        )

    async def _consume_bucket(self, store: RateLimitStore, key: str, cost: int) -> RateLimitDecision:
        rule = self.rule
        now = self._clock()
        state = await store.get_bucket(key)

        if state is None:
            tokens = float(rule.points)
        else:
            elapsed = max(0.0, now - state.last_refill)
            tokens = min(float(rule.points), state.tokens + elapsed * rule.refill_rate)

        allowed = tokens >= cost
        if allowed:
            tokens -= cost
            resets_in = (rule.points - tokens) / rule.refill_rate
        else:
            resets_in = (cost - tokens) / rule.refill_rate

        await store.save_bucket(key, TokenBucketState(tokens=tokens, last_refill=now), rule.ttl_seconds)

        return RateLimitDecision.from_counter(
            allowed=allowed,
            limit=rule.points,
            remaining=math.floor(tokens),
            resets_in=resets_in,
            scope=rule.scope,
            now=now,
        )


def _compile_endpoint_pattern(pattern: str) -> Pattern[str]:
    """``/a/:id/b`` matches one segment for ``:id``; a trailing ``/*`` matches any suffix."""
    wildcard = pattern.endswith("/*")
    if wildcard:
        pattern = pattern[:-2]

    parts = []
    for segment in pattern.split("/"):
        if segment.startswith(":"):
            parts.append("[^/]+")
        else:
            parts.append(re.escape(segment))

    regex = "/".join(parts)
    if wildcard:
        regex += "(?:/.*)?"
    return re.compile(f"^{regex}$")


class EndpointMatcher:
    """Resolves a request path to a value keyed by path pattern.

    Exact paths win over patterns; patterns are tried in insertion order.
    """

    def __init__(self, entries: Mapping[str, object]):
        self._exact: Dict[str, object] = {}
        self._patterns: List[Tuple[Pattern[str], object]] = []
        for path, value in entries.items():
            self._exact[path] = value
            if ":" in path or path.endswith("/*"):
                self._patterns.append((_compile_endpoint_pattern(path), value))

    def match(self, path: str):
        if path in self._exact:
            return self._exact[path]
        for regex, value in self._patterns:
            if regex.match(path):
                return value
        return None


class RateLimitPipeline:
    """
    Multi-scope composition for inbound requests.

    Layers run in order global -> burst -> endpoint -> tier. The global layer
    is keyed by client IP, the others by the request identity (``user:<id>``
    or ``ip:<address>``). The first layer that denies stops the evaluation.
    """

    def __init__(
        self,
        *,
        global_limiter: Optional[RateLimiter] = None,
        burst_limiter: Optional[RateLimiter] = None,
        endpoint_limiters: Optional[Mapping[str, RateLimiter]] = None,
        tier_limiters: Optional[Mapping[str, RateLimiter]] = None,
        default_tier: str = "free",
        skip_paths: Iterable[str] = (),
        skip_ips: Iterable[str] = (),
        skip_user_ids: Iterable[str] = (),
    ):
        self.global_limiter = global_limiter
        self.burst_limiter = burst_limiter
        self.endpoint_limiters: Dict[str, RateLimiter] = dict(endpoint_limiters or {})
        self.tier_limiters: Dict[str, RateLimiter] = dict(tier_limiters or {})
        self.default_tier = default_tier
        self.skip_paths = tuple(skip_paths)
        self.skip_ips = frozenset(skip_ips)
        self.skip_user_ids = frozenset(str(user_id) for user_id in skip_user_ids)
        self._endpoints = EndpointMatcher(self.endpoint_limiters)

        if self.tier_limiters and default_tier not in self.tier_limiters:
            raise ValueError(f"Default tier {default_tier!r} has no rule")

    @classmethod
    def from_rules(
        cls,
        store: RateLimitStore,
        *,
        global_rule: Optional[RateLimitRule] = None,
        burst_rule: Optional[RateLimitRule] = None,
        endpoint_rules: Optional[Mapping[str, RateLimitRule]] = None,
        tier_rules: Optional[Mapping[str, RateLimitRule]] = None,
        fallback_store: Optional[RateLimitStore] = None,
        strategy: RateLimitStrategy = RateLimitStrategy.FIXED_WINDOW,
        clock: Callable[[], float] = time.time,
        fail_open: bool = True,
        key_prefix: str = "ratelimit",
        metrics: Optional[MetricsCollector] = None,
        **options,
    ) -> RateLimitPipeline:
        """Build one limiter per rule, all sharing the same store and policy."""

        def limiter(rule: RateLimitRule) -> RateLimiter:
            return RateLimiter(
                rule,
                store,
                fallback_store,
                strategy=strategy,
                clock=clock,
                fail_open=fail_open,
                key_prefix=key_prefix,
                metrics=metrics,
            )

        return cls(
            global_limiter=limiter(global_rule) if global_rule else None,
            burst_limiter=limiter(burst_rule) if burst_rule else None,
            endpoint_limiters={
                path: limiter(rule.with_scope(f"endpoint:{path}"))
                for path, rule in (endpoint_rules or {}).items()
            },
            tier_limiters={
                tier: limiter(rule.with_scope(f"tier:{tier}"))
                for tier, rule in (tier_rules or {}).items()
            },
            **options,
        )

    def should_skip(self, path: str, client_ip: Optional[str], user_id: Optional[str] = None) -> bool:
        """Bypass lists: path prefixes, client IPs and user ids."""
        if any(path.startswith(prefix) for prefix in self.skip_paths):
            return True
        if client_ip and client_ip in self.skip_ips:
            return True
        return user_id is not None and str(user_id) in self.skip_user_ids

    def endpoint_limiter(self, path: str) -> Optional[RateLimiter]:
        return self._endpoints.match(path)

    def tier_limiter(self, tier: Optional[str]) -> Optional[RateLimiter]:
        if tier and tier in self.tier_limiters:
            return self.tier_limiters[tier]
        return self.tier_limiters.get(self.default_tier)

    def limiter_for_scope(self, scope: str) -> Optional[RateLimiter]:
        """Find the limiter owning ``scope`` (``global``, ``burst``, ``endpoint:<path>``, ``tier:<name>``)."""
        for limiter in self.limiters():
            if limiter.rule.scope == scope:
                return limiter
        return None

    def limiters(self) -> List[RateLimiter]:
        layers = [self.global_limiter, self.burst_limiter]
        layers += list(self.endpoint_limiters.values()) + list(self.tier_limiters.values())
        return [limiter for limiter in layers if limiter is not None]

    async def check(
        self,
        *,
        client_ip: str,
        identity: str,
        path: str,
        tier: Optional[str] = None,
        cost: int = 1,
    ) -> RateLimitVerdict:
        """
        Evaluate the layers for one request.

        Returns:
            RateLimitVerdict with every evaluated decision. ``label`` names
            the denying layer: ``global``, ``burst``, ``endpoint`` or the
            tier name.
        """
        verdict = RateLimitVerdict()
        resolved_tier = tier if tier in self.tier_limiters else self.default_tier

        layers: List[Tuple[str, Optional[RateLimiter], str]] = [
            ("global", self.global_limiter, client_ip),
            ("burst", self.burst_limiter, identity),
            ("endpoint", self.endpoint_limiter(path), identity),
            (resolved_tier, self.tier_limiter(resolved_tier), identity),
        ]

        for label, limiter, key in layers:
            if limiter is None:
                continue
            decision = await limiter.consume(key, cost if label != "global" else 1)
            verdict.decisions.append(decision)
            if not decision.allowed:
                verdict.label = label
                logger.warning(
                    "request_rate_limited",
                    layer=label,
                    scope=decision.scope,
                    identity=identity,
                    path=path,
                    retry_after=decision.retry_after,
                )
                break

        return verdict

"""
Redis mirror of circuit breaker state.

Each transition is written to ``circuit:<name>:state`` as a JSON document
with a short TTL so other processes and dashboards can see which
dependencies are failing. The document is advisory: breakers never read it
back.
"""

import json
from typing import Any, Dict

import structlog
from redis.asyncio import Redis

from airavat.domain.resilience.circuit_breaker import CircuitStateMirror

logger = structlog.get_logger(__name__)


class RedisCircuitStateMirror(CircuitStateMirror):
    def __init__(self, redis_client: Redis, ttl_seconds: int = 300, key_prefix: str = "circuit"):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def key_for(self, name: str) -> str:
        return f"{self.key_prefix}:{name}:state"

    async def publish(self, name: str, snapshot: Dict[str, Any]) -> None:
        await self.redis.set(self.key_for(name), json.dumps(snapshot), ex=self.ttl_seconds)
        logger.debug("circuit_state_mirrored", name=name, state=snapshot.get("state"))


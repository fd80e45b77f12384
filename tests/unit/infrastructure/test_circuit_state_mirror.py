import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from airavat.infrastructure.circuit_state import RedisCircuitStateMirror


@pytest.mark.asyncio
async def test_publish_writes_snapshot_with_ttl():
    redis_client = MagicMock()
    redis_client.set = AsyncMock()
    mirror = RedisCircuitStateMirror(redis_client, ttl_seconds=120)
    snapshot = {"name": "payment-gateway", "state": "OPEN"}

    await mirror.publish("payment-gateway", snapshot)

    redis_client.set.assert_awaited_once_with("circuit:payment-gateway:state", json.dumps(snapshot), ex=120)

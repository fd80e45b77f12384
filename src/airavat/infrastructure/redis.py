"""
Redis Connection Module

Asynchronous Redis client shared by the rate limit store, the circuit state
mirror and the health check.

One client is created per process by the application lifespan and kept on
``app.state.redis``. The connection pool inside the client is lazy, so
creating it never touches the network.

**Security Note**: Use a ``rediss://`` URL when Redis is reached over an
untrusted network and never log the URL itself, since it may carry the
password.

Functions:
    create_redis_client: Builds a client from settings.
    get_redis: A FastAPI dependency returning the process-wide client.
"""

from typing import Optional

import structlog
from fastapi import Request
from redis.asyncio import Redis

from airavat.core.config.settings import settings

logger = structlog.get_logger(__name__)


def create_redis_client(url: Optional[str] = None, socket_timeout: Optional[float] = None) -> Redis:
    """
    Create an asynchronous Redis client.

    Args:
        url: Connection URL; ``settings.REDIS_URL`` when omitted.
        socket_timeout: Socket timeout in seconds; ``settings.REDIS_SOCKET_TIMEOUT``
            when omitted.

    Returns:
        Redis: A client with string decoding enabled.
    """
    client = Redis.from_url(
        url or settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=socket_timeout if socket_timeout is not None else settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=socket_timeout if socket_timeout is not None else settings.REDIS_SOCKET_TIMEOUT,
    )
    logger.debug("redis_client_created")
    return client


async def close_redis_client(client: Redis) -> None:
    await client.aclose()
    logger.debug("redis_client_closed")


def get_redis(request: Request) -> Optional[Redis]:
    """
    FastAPI dependency returning the client created at startup, or None
    when the application runs without Redis.
    """
    return getattr(request.app.state, "redis", None)

# ruff: noqa: PLW0603
"""Redis connection management.

The Redis client backs the cross-instance per-enrollment lock and the course
outline cache. The service runs without it, with local locks and no cache.
"""

import redis.asyncio as redis

from coursetrack.config import get_settings
from coursetrack.core.logging import get_logger


logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


async def init_redis() -> redis.Redis:
    """Initialize the Redis connection pool and verify connectivity."""
    global _redis_client

    settings = get_settings()

    client = redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=settings.redis_retry_on_timeout,
        health_check_interval=settings.redis_health_check_interval,
        decode_responses=True,
    )

    try:
        await client.ping()
    except redis.ConnectionError as e:
        logger.warning("redis_connection_failed", error=str(e))
        await client.aclose()
        raise

    _redis_client = client
    logger.info("redis_connected", url=settings.redis_url)
    return client


async def shutdown_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        logger.info("redis_disconnected")
        _redis_client = None


# leadrelay/services/redis.py
from __future__ import annotations

from typing import Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ExternalServiceError
from leadrelay.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global Redis connection pool
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


async def init_redis_pool() -> redis.Redis:
    """Initialize the Redis connection pool used by the scheduler lock."""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    try:
        _redis_pool = ConnectionPool.from_url(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            retry=Retry(backoff=ExponentialBackoff(base=1), retries=3),
            retry_on_error=[redis.ConnectionError, redis.TimeoutError],
            health_check_interval=30,
            decode_responses=True,
        )
        _redis_client = redis.Redis(connection_pool=_redis_pool)
        await _redis_client.ping()
    except redis.RedisError as e:
        logger.error("redis.connection_failed", error=str(e))
        _redis_pool = None
        _redis_client = None
        raise ExternalServiceError(
            message="Redis connection failed",
            details={"error": str(e)},
        ) from e

    logger.info("redis.connected")
    return _redis_client


async def close_redis_pool() -> None:
    global _redis_pool, _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("redis.connections_closed")

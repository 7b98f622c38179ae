"""
Redis connection management.

Provides the async Redis connection used for:
- Usage reservations (pending quota held by in-flight syncs)
- Celery broker/backend (configured separately in workers.celery_app)
"""

import logging
from typing import Optional

from redis.asyncio import Redis, ConnectionPool

from app.core.config import settings

logger = logging.getLogger(__name__)

# Global connection pool
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis(url: Optional[str] = None) -> Redis:
    """
    Initialize Redis connection pool.

    Called during application startup and lazily by get_redis().
    """
    global _redis_pool, _redis_client

    if _redis_pool is None:
        logger.info("Initializing Redis connection pool")

        _redis_pool = ConnectionPool.from_url(
            url or settings.REDIS_URL,
            decode_responses=True,
            max_connections=20,
            socket_connect_timeout=5,
            socket_keepalive=True
        )

        _redis_client = Redis(connection_pool=_redis_pool)

        try:
            await _redis_client.ping()
            logger.info("Redis connection successful")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            raise

    return _redis_client


async def get_redis() -> Redis:
    """Get Redis client instance, initializing the pool on first use."""
    if _redis_client is None:
        return await init_redis()
    return _redis_client


async def close_redis() -> None:
    """
    Close Redis connection pool.

    Called during application shutdown.
    """
    global _redis_pool, _redis_client

    if _redis_client:
        logger.info("Closing Redis connection")
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

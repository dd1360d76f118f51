"""
Redis client construction for the chat caching layer.

Provides:
- Async Redis client with connection pooling
- fakeredis in test mode
- Graceful degradation (None when Redis is unavailable)

Clients are created explicitly and handed to the caches that use them;
there is no process-wide client.
"""

from typing import Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


def _redact(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url.split("//")[-1]


async def create_redis_client(
    redis_url: Optional[str],
    use_fake: bool = False,
) -> Optional[redis.Redis]:
    """
    Create an async Redis client with connection pooling.

    Args:
        redis_url: Redis connection URL; None disables caching
        use_fake: If True, return an in-process fakeredis client

    Returns:
        Redis client instance or None if Redis is not available
    """
    if use_fake:
        from fakeredis import aioredis as fakeredis

        logger.info("Using fakeredis for caching")
        return fakeredis.FakeRedis(decode_responses=True)

    if not redis_url:
        logger.warning(
            "Redis URL not configured, caching will be disabled",
            hint="Set LEXCHAT_REDIS_URL to enable caching",
        )
        return None

    try:
        client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=20,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        await client.ping()

        logger.info(
            "Redis client initialized successfully",
            url=_redact(redis_url),
            max_connections=20,
        )
        return client

    except redis.ConnectionError as e:
        logger.error(
            "Redis connection failed",
            error=str(e),
            redis_url=_redact(redis_url),
            hint="Check LEXCHAT_REDIS_URL and ensure Redis server is running",
        )
        return None


async def close_redis_client(client: Optional[redis.Redis]) -> None:
    """Close a Redis client, logging instead of raising on failure."""
    if client is None:
        return
    try:
        await client.aclose()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning("Error closing Redis client", error=str(e))

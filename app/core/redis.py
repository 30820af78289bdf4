"""Shared Redis client for the active config cache and the quote memo.

Redis is optional: when it is unreachable the client stays ``None`` and
callers fall back to the database.
"""
import logging
from typing import Optional
from redis.asyncio import Redis
from app.core.config import settings

logger = logging.getLogger(__name__)

redis: Optional[Redis] = None


async def init_redis() -> Redis:
    global redis
    client = Redis.from_url(settings.REDIS_URL, decode_responses=False)
    try:
        await client.ping()
    except Exception as e:
        logger.error(f"Failed to connect to Redis at startup: {e}")
        await client.aclose()
        redis = None
        raise
    redis = client
    logger.info("Connected to Redis")
    return redis


async def close_redis() -> None:
    global redis
    if redis is not None:
        await redis.aclose()
        redis = None


def is_connected() -> bool:
    return redis is not None


def get_redis() -> Redis:
    if redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis

"""
Redis connection used by the tracking engine.

Redis carries the device-facing "send a fresh location" requests raised
by stale-data recovery, and backs the /health check.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError
from backend.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared publisher connection."""
    return redis_client


async def ping_redis() -> bool:
    try:
        return bool(await redis_client.ping())
    except RedisError:
        return False


async def close_redis() -> None:
    await redis_client.aclose()

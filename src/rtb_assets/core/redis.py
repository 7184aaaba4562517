"""
Redis Connection

Async Redis client used for login-session tracking.
Redis is optional outside production: callers receive None when it is down.
"""

from redis.asyncio import Redis, from_url

from rtb_assets.core.config import settings

redis_client: Redis | None = None


async def init_redis() -> Redis:
    """Connect and ping. Call on application startup."""
    global redis_client
    redis_client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await redis_client.ping()
    return redis_client


async def get_redis() -> Redis | None:
    """FastAPI dependency returning the shared client, or None if unavailable."""
    return redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None

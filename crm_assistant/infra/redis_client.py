"""Shared asyncio Redis connection."""

from typing import Optional
import redis.asyncio as redis

from crm_assistant.infra.config import config

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return the process-wide Redis client, creating it on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

"""Redis connection management and the pub/sub transport binding."""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis

from babble.core.config import get_settings

settings = get_settings()

_redis_pool: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None


class RedisTransport:
    """Publishes JSON payloads with a single PUBLISH per event."""

    def __init__(self, client: redis.Redis):
        self._client = client

    async def publish(self, channel_key: str, payload: dict[str, Any]) -> None:
        await self._client.publish(channel_key, json.dumps(payload))

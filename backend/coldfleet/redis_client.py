# coldfleet/redis_client.py
# ------------------------------------------------------------
# Centralized Redis connection helpers.
#
# - get_redis(): sync client for the plain request handlers
# - get_async_redis(): asyncio client for the simulation sinks and
#   the SSE stream, so their I/O never blocks the event loop
# ------------------------------------------------------------

import redis
import redis.asyncio as aioredis

from .config import settings


def get_redis() -> redis.Redis:
    """
    Returns a Redis client instance.

    - decode_responses=True ensures all values are returned as str
      (important for JSON handling and SSE payloads).
    """
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
    )


def get_async_redis() -> aioredis.Redis:
    return aioredis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
    )

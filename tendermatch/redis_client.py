# tendermatch/redis_client.py
import time
import logging

import redis.asyncio as aioredis

from tendermatch.config import settings

logger = logging.getLogger(__name__)

_redis = None


def get_redis():
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis():
    global _redis
    if _redis is not None:
        try:
            await _redis.close()
        except Exception:
            logger.exception("Failed to close redis")
        _redis = None


async def allow_request(key: str, limit: int, period: int = 60, redis=None) -> bool:
    """Fixed-window rate limit: at most `limit` hits per `period` seconds."""
    r = redis or get_redis()
    now = int(time.time())
    bucket_key = f"rate:{key}:{now // period}"
    val = await r.incr(bucket_key)
    if val == 1:
        await r.expire(bucket_key, period + 1)
    return val <= limit

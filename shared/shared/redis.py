import os
import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL")


def get_redis(url: str | None = None):
    url = url or REDIS_URL
    if not url:
        raise RuntimeError("REDIS_URL environment variable is not set")
    return redis.from_url(url, decode_responses=True)

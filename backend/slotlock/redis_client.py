"""
backend/slotlock/redis_client.py

Shared Redis connection. None when REDIS_URL is unset: caches and the
job queue then run in-process.
"""

import redis

from .config import settings

redis_client: redis.Redis | None = (
    redis.from_url(settings.redis_url, decode_responses=True) if settings.redis_url else None
)

from __future__ import annotations

from redis import asyncio as aioredis

from .config import Settings


def get_redis(settings: Settings) -> aioredis.Redis | None:
    url = settings.redis_url
    if not url:
        return None
    # Cache payloads are raw upstream bytes; keep them undecoded.
    return aioredis.from_url(url, decode_responses=False)

"""Versioned cache-aside layer for upstream collection reads.

Entries are keyed ``{cache_version}/{namespace}/{discriminator}`` so that
bumping ``CACHE_VERSION`` orphans every entry written by an older
deployment. The cache is advisory: losing it only costs upstream calls.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .config import Settings
from .redis_util import get_redis

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[bytes]]


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def put(self, key: str, value: bytes, ttl: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class MemoryCacheBackend:
    """Process-local backend; an entry is served only while ``now < expires_at``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[bytes, float]] = {}

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return payload

    async def put(self, key: str, value: bytes, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    """Redis-backed store. An unreachable Redis reads as a miss and writes are dropped."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            logger.warning("Redis get failed key=%s error=%s", key, exc)
            return None

    async def put(self, key: str, value: bytes, ttl: int) -> None:
        try:
            await self._client.set(key, value, ex=max(1, int(ttl)))
        except RedisError as exc:
            logger.warning("Redis set failed key=%s error=%s", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            logger.warning("Redis delete failed key=%s error=%s", key, exc)

    async def close(self) -> None:
        await self._client.aclose()


def build_cache_backend(settings: Settings) -> CacheBackend:
    client = get_redis(settings)
    if client is None:
        logger.info("REDIS_URL not set; using in-process cache")
        return MemoryCacheBackend()
    return RedisCacheBackend(client)


class CacheAside:
    def __init__(self, backend: CacheBackend, version: str, namespace: str = "grocy") -> None:
        self.backend = backend
        self.version = version
        self.namespace = namespace

    def key(self, discriminator: str) -> str:
        return f"{self.version}/{self.namespace}/{discriminator}"

    async def get_or_fetch(self, discriminator: str, ttl: int, fetcher: Fetcher) -> Any:
        """Return the cached JSON payload, populating it from ``fetcher`` on a miss.

        Fetch failures propagate and leave the cache untouched. Concurrent
        misses on one key may each call ``fetcher``; upstream reads are
        idempotent so the last writer wins.
        """
        key = self.key(discriminator)
        cached = await self.backend.get(key)
        if cached is not None:
            return json.loads(cached)

        payload = await fetcher()
        data = json.loads(payload)
        await self.backend.put(key, payload, ttl)
        logger.debug("Cache populated key=%s ttl=%s bytes=%s", key, ttl, len(payload))
        return data

    async def invalidate(self, discriminator: str) -> None:
        key = self.key(discriminator)
        await self.backend.delete(key)
        logger.info("Cache entry invalidated key=%s", key)

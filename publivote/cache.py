import json
import logging

import redis.asyncio as redis

from publivote.config import settings

logger = logging.getLogger(__name__)

LIST_PATTERN = "publications:list:*"


def list_key(filters: dict, limit: int, offset: int) -> str:
    """Cache key for one page of ``find_many``; encodes every filter."""
    parts = [f"{name}={filters[name]}" for name in sorted(filters) if filters[name] is not None]
    return f"publications:list:{limit}:{offset}:{'&'.join(parts)}"


def detail_key(publication_id: int) -> str:
    return f"publications:detail:{publication_id}"


class CacheManager:
    """
    Cache-aside manager backed by Redis.

    Every method degrades to a no-op when Redis is unreachable: reads
    miss, writes and invalidations are skipped.  Failures are logged,
    never raised to callers.
    """

    def __init__(self, url: str | None = None) -> None:
        self._url = url or settings.REDIS_URL
        self._redis: redis.Redis | None = None
        self._hits: int = 0
        self._misses: int = 0

    async def connect(self) -> None:
        self._redis = redis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", self._url)
        except Exception as exc:
            logger.warning("Redis ping failed, cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        if not self._redis:
            self._misses += 1
            return None
        try:
            data = await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            self._misses += 1
            return None
        if data is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(data)

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching *pattern* using SCAN (never KEYS)."""
        if not self._redis:
            return
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
                logger.debug("Cache invalidated %d key(s) matching %r", len(keys), pattern)
        except Exception as exc:
            logger.debug("Cache DELETE_PATTERN error for pattern=%r: %s", pattern, exc)

    # ------------------------------------------------------------------
    # Domain-level invalidation
    # ------------------------------------------------------------------

    async def invalidate_publication(self, publication_id: int | None = None) -> None:
        """
        Drop every cached list page, plus the detail entry of
        *publication_id* when given.  Called after every write that can
        change a publication view: create, delete, vote toggle, image
        add/remove.
        """
        await self.delete_pattern(LIST_PATTERN)
        if publication_id is not None:
            await self.delete_pattern(detail_key(publication_id))

    async def invalidate_all_publications(self) -> None:
        """Drop every cached list page and detail entry (e.g. after an author edit)."""
        await self.delete_pattern("publications:*")

    @property
    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "enabled": self.enabled,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }

"""
Organization-scoped cache for resolved prices.

Every key carries the organization id so one organization can never read
another organization's entries. Keys follow:

    {namespace}:{organization_id}:price:{product}|{variation}|{country}|{level}

Entries are never invalidated early: a resolved price may be served for up
to ``PRICE_CACHE_TTL`` seconds after the catalog changes, so the backends
only need read, write and expiry.

Backends:
1. Redis (when REDIS_URL is configured)
2. In-memory (single process, development and tests)

Usage:
    cache = get_cache()
    quote = await cache.get_price(org_id, price_key)
    await cache.set_price(org_id, price_key, {"unit_price": "10.00", "is_points": False})
"""
import json
from typing import Any, Optional, Dict
from datetime import datetime, timedelta, timezone
from abc import ABC, abstractmethod
import asyncio
import logging

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Key/value store with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> bool:
        pass

    async def cleanup_expired(self) -> int:
        """Drop expired entries. Backends with native expiry have nothing to do."""
        return 0


class InMemoryCache(CacheBackend):
    """Process-local backend. Expired entries read as misses until purged."""

    def __init__(self):
        self._entries: Dict[str, tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= datetime.now(timezone.utc):
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        async with self._lock:
            self._entries[key] = (value, datetime.now(timezone.utc) + timedelta(seconds=ttl))
        return True

    async def cleanup_expired(self) -> int:
        async with self._lock:
            now = datetime.now(timezone.utc)
            stale = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache(CacheBackend):
    """Shared backend. Redis errors degrade to a miss or a skipped write."""

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._client = None

    def _connection(self):
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._connection().get(key)
        except redis.RedisError as e:
            logger.warning(f"Price cache read failed for {key}: {e}")
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            await self._connection().set(key, json.dumps(value), ex=ttl)
        except redis.RedisError as e:
            logger.warning(f"Price cache write failed for {key}: {e}")
            return False
        return True


class CacheService:
    """Price quote cache scoped by organization."""

    def __init__(self, backend: CacheBackend, namespace: str = "commerce"):
        self._backend = backend
        self._namespace = namespace

    def _make_key(self, organization_id: str, key: str) -> str:
        if not organization_id:
            logger.warning(f"Cache key created without organization id: {key}")
        return f"{self._namespace}:{organization_id}:{key}"

    @staticmethod
    def price_key(product_id, variation_id, country: str, level_id) -> str:
        """Key over the full resolver input tuple."""
        return f"price:{product_id}|{variation_id or '-'}|{country.upper()}|{level_id or '-'}"

    async def get_price(self, organization_id: str, key: str) -> Optional[dict]:
        return await self._backend.get(self._make_key(organization_id, key))

    async def set_price(
        self,
        organization_id: str,
        key: str,
        data: dict,
        ttl: Optional[int] = None
    ) -> bool:
        ttl = ttl or settings.PRICE_CACHE_TTL
        return await self._backend.set(self._make_key(organization_id, key), data, ttl)

    async def cleanup_expired(self) -> int:
        return await self._backend.cleanup_expired()


_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Get the cache service singleton."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("Price cache initialized with Redis backend")
        else:
            backend = InMemoryCache()
            logger.info("Price cache initialized with in-memory backend")

        _cache_instance = CacheService(backend)

    return _cache_instance

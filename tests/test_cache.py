"""
Tests — Price Cache
====================
"""

from app.services.cache_service import CacheService, InMemoryCache


ORG = "00000000-0000-0000-0000-0000000000b1"
OTHER_ORG = "00000000-0000-0000-0000-0000000000b2"


class TestCacheService:
    async def test_keys_are_scoped_per_organization(self, cache):
        await cache.set_price(ORG, "price:x", {"unit_price": "10.00"})

        assert await cache.get_price(ORG, "price:x") == {"unit_price": "10.00"}
        assert await cache.get_price(OTHER_ORG, "price:x") is None

    async def test_entries_expire_after_ttl(self, cache):
        await cache.set_price(ORG, "price:x", {"unit_price": "10.00"}, ttl=-1)

        assert await cache.get_price(ORG, "price:x") is None

    async def test_price_key_covers_every_input(self):
        key = CacheService.price_key("p", None, "us", None)
        assert key == "price:p|-|US|-"
        assert CacheService.price_key("p", "v", "US", "gold") != key


class TestInMemoryCache:
    async def test_expired_entries_are_misses(self):
        backend = InMemoryCache()
        await backend.set("k", "v", ttl=-1)

        assert await backend.get("k") is None
        assert len(backend) == 0

    async def test_cleanup_expired(self):
        backend = InMemoryCache()
        await backend.set("old", 1, ttl=-1)
        await backend.set("fresh", 2, ttl=60)

        assert await backend.cleanup_expired() == 1
        assert await backend.get("fresh") == 2

"""Checkout configuration cache (in-memory backend)."""

import pytest

from app.services.cache_service import CacheService, InMemoryCache


@pytest.fixture
def cache() -> CacheService:
    return CacheService(InMemoryCache())


async def test_checkout_config_round_trip(cache):
    payload = {"campaign": {"campaign_id": 1}, "pricing": {"total": "45.00"}}

    assert await cache.get_checkout_config("tenant-a", 1, 2) is None
    await cache.set_checkout_config("tenant-a", 1, 2, payload)

    assert await cache.get_checkout_config("tenant-a", 1, 2) == payload


async def test_keys_are_isolated_per_tenant(cache):
    await cache.set_checkout_config("tenant-a", 1, 1, {"name": "A"})

    assert await cache.get_checkout_config("tenant-b", 1, 1) is None


async def test_invalidate_campaign_drops_all_its_offers(cache):
    await cache.set_checkout_config("tenant-a", 1, 1, {"offer": 1})
    await cache.set_checkout_config("tenant-a", 1, 2, {"offer": 2})
    await cache.set_checkout_config("tenant-a", 2, 1, {"offer": 1})

    removed = await cache.invalidate_campaign("tenant-a", 1)

    assert removed == 2
    assert await cache.get_checkout_config("tenant-a", 1, 2) is None
    assert await cache.get_checkout_config("tenant-a", 2, 1) == {"offer": 1}


async def test_expired_entries_are_misses():
    backend = InMemoryCache()
    await backend.set("k", "v", ttl=-1)

    assert await backend.get("k") is None


async def test_clear_tenant_cache(cache):
    await cache.set("tenant-a", "x", 1)
    await cache.set("tenant-b", "x", 2)

    await cache.clear_tenant_cache("tenant-a")

    assert await cache.get("tenant-a", "x") is None
    assert await cache.get("tenant-b", "x") == 2


async def test_in_memory_clear_pattern_matches_prefix():
    backend = InMemoryCache()
    await backend.set("checkout:t:validate:1:1", {"offer": 1})
    await backend.set("checkout:t:validate:1:2", {"offer": 2})
    await backend.set("checkout:t:validate:2:1", {"offer": 1})

    assert await backend.clear_pattern("checkout:t:validate:1:*") == 2
    assert await backend.get("checkout:t:validate:1:1") is None
    assert await backend.get("checkout:t:validate:2:1") == {"offer": 1}

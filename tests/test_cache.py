from unittest.mock import AsyncMock

import pytest

from mobile_api_client.cache import CacheConfig, CacheManager, ResourceClass, make_cache_key
from mobile_api_client.exceptions import StorageError
from mobile_api_client.storage import MemoryStore, StorageKeys

PRODUCTS_KEY = make_cache_key("GET", "/products", {"page": 1})


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache(store, clock):
    return CacheManager(store, clock=clock)


def test_cache_key_ignores_param_order():
    assert make_cache_key("GET", "/products", {"page": 1, "q": "milk"}) == \
        make_cache_key("get", "/products", {"q": "milk", "page": 1})
    assert make_cache_key("GET", "/products", {"page": 1}) != make_cache_key("GET", "/products", {"page": 2})
    assert "/products" in PRODUCTS_KEY


def test_ttl_defaults_by_resource_class():
    config = CacheConfig()
    assert config.ttl_for(ResourceClass.CATALOG) == 300
    assert config.ttl_for(ResourceClass.TAXONOMY) == 1800
    assert config.ttl_for(ResourceClass.USER_PROFILE) == 600
    assert config.ttl_for(ResourceClass.CART) == 60


@pytest.mark.asyncio
async def test_set_writes_both_tiers(cache, store):
    await cache.set(PRODUCTS_KEY, {"items": [1, 2]}, ttl=60)

    assert PRODUCTS_KEY in cache
    assert f"cache_{PRODUCTS_KEY}" in store
    assert await cache.get(PRODUCTS_KEY) == {"items": [1, 2]}


@pytest.mark.asyncio
async def test_expired_entry_is_evicted_from_store(cache, store, clock):
    await cache.set(PRODUCTS_KEY, {"items": []}, ttl=60)
    clock.advance(60)

    assert await cache.get(PRODUCTS_KEY) is None
    assert f"cache_{PRODUCTS_KEY}" not in store


@pytest.mark.asyncio
async def test_fresh_persistent_entry_is_promoted(store, clock):
    await CacheManager(store, clock=clock).set(PRODUCTS_KEY, {"items": [3]}, ttl=60)

    # A new process starts with an empty in-process tier
    restarted = CacheManager(store, clock=clock)
    assert PRODUCTS_KEY not in restarted

    clock.advance(30)
    assert await restarted.get(PRODUCTS_KEY) == {"items": [3]}
    assert PRODUCTS_KEY in restarted


@pytest.mark.asyncio
async def test_get_stale_ignores_ttl_and_keeps_entry(store, clock):
    await CacheManager(store, clock=clock).set(PRODUCTS_KEY, {"items": [4]}, ttl=60)
    clock.advance(3600)

    restarted = CacheManager(store, clock=clock)
    assert await restarted.get_stale(PRODUCTS_KEY) == {"items": [4]}
    assert f"cache_{PRODUCTS_KEY}" in store


@pytest.mark.asyncio
async def test_store_read_failure_is_a_miss(store, clock):
    store.get = AsyncMock(side_effect=StorageError("get", "connection reset"))
    cache = CacheManager(store, clock=clock)

    assert await cache.get(PRODUCTS_KEY) is None
    assert await cache.get_stale(PRODUCTS_KEY) is None
    assert cache.get_stats()["misses"] == 2


@pytest.mark.asyncio
async def test_corrupt_entry_is_a_miss(clock):
    store = MemoryStore({f"cache_{PRODUCTS_KEY}": "{not json"})
    cache = CacheManager(store, clock=clock)

    assert await cache.get(PRODUCTS_KEY) is None


@pytest.mark.asyncio
async def test_store_write_failure_keeps_in_process_entry(store, cache):
    store.set = AsyncMock(side_effect=StorageError("set", "disk full"))

    await cache.set(PRODUCTS_KEY, {"items": [5]}, ttl=60)

    assert await cache.get(PRODUCTS_KEY) == {"items": [5]}


@pytest.mark.asyncio
async def test_invalidate_removes_matching_keys_from_both_tiers(cache, store):
    product_detail_key = make_cache_key("GET", "/products/42")
    cart_key = make_cache_key("GET", "/cart")
    await store.set(StorageKeys.AUTH_TOKEN, "token")
    await cache.set(PRODUCTS_KEY, [1], ttl=60)
    await cache.set(product_detail_key, {"id": 42}, ttl=60)
    await cache.set(cart_key, {"items": []}, ttl=60)

    removed = await cache.invalidate("products")

    assert removed == 2
    assert PRODUCTS_KEY not in cache
    assert product_detail_key not in cache
    assert f"cache_{PRODUCTS_KEY}" not in store
    assert f"cache_{product_detail_key}" not in store
    assert await cache.get(cart_key) == {"items": []}
    assert f"cache_{cart_key}" in store
    assert StorageKeys.AUTH_TOKEN in store


@pytest.mark.asyncio
async def test_invalidate_survives_store_failure(cache, store):
    await cache.set(PRODUCTS_KEY, [1], ttl=60)
    store.list_keys = AsyncMock(side_effect=StorageError("list_keys", "timeout"))

    assert await cache.invalidate("products") == 1
    assert PRODUCTS_KEY not in cache


@pytest.mark.asyncio
async def test_clear_only_drops_in_process_tier_by_default(cache, store):
    await cache.set(PRODUCTS_KEY, [1], ttl=60)

    await cache.clear()

    assert PRODUCTS_KEY not in cache
    assert f"cache_{PRODUCTS_KEY}" in store


@pytest.mark.asyncio
async def test_clear_with_persistent_purges_only_cache_entries(cache, store):
    await store.set(StorageKeys.REFRESH_TOKEN, "refresh")
    await cache.set(PRODUCTS_KEY, [1], ttl=60)

    await cache.clear(include_persistent=True)

    assert f"cache_{PRODUCTS_KEY}" not in store
    assert StorageKeys.REFRESH_TOKEN in store


@pytest.mark.asyncio
async def test_disabled_cache_stores_nothing(store, clock):
    cache = CacheManager(store, CacheConfig(enabled=False), clock=clock)

    await cache.set(PRODUCTS_KEY, [1], ttl=60)

    assert await cache.get(PRODUCTS_KEY) is None
    assert len(store) == 0


class UnreliableStore(MemoryStore):
    """A backend that fails with its own exception types instead of StorageError."""

    async def get(self, key):
        raise ConnectionError("store backend unavailable")

    async def set(self, key, value):
        raise OSError("read-only file system")

    async def list_keys(self):
        raise TimeoutError("scan timed out")


@pytest.mark.asyncio
async def test_any_store_exception_is_recovered(clock):
    cache = CacheManager(UnreliableStore(), clock=clock)

    assert await cache.get(PRODUCTS_KEY) is None
    assert await cache.get_stale(PRODUCTS_KEY) is None

    await cache.set(PRODUCTS_KEY, {"items": [6]}, ttl=60)
    assert await cache.get(PRODUCTS_KEY) == {"items": [6]}

    assert await cache.invalidate("products") == 1
    await cache.clear(include_persistent=True)


@pytest.mark.asyncio
async def test_expired_entry_leaves_in_process_tier(cache, clock):
    await cache.set(PRODUCTS_KEY, {"items": []}, ttl=60)
    clock.advance(60)

    assert await cache.get(PRODUCTS_KEY) is None
    assert PRODUCTS_KEY not in cache
    assert cache.get_stats()["memory_entries"] == 0


@pytest.mark.asyncio
async def test_get_stale_counts_hits_and_misses(cache):
    await cache.set(PRODUCTS_KEY, [1], ttl=60)

    assert await cache.get_stale(PRODUCTS_KEY) == [1]
    assert await cache.get_stale(make_cache_key("GET", "/cart")) is None

    stats = cache.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1

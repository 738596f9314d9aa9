from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from mobile_api_client.exceptions import StorageError
from mobile_api_client.storage import MemoryStore, RedisStore, StorageKeys, TokenPair, TokenStore


@pytest.mark.asyncio
async def test_memory_store_operations():
    store = MemoryStore({"a": "1"})

    await store.set("b", "2")
    await store.set_many({"c": "3", "d": "4"})
    await store.remove("a")
    await store.remove_many(["c", "missing"])

    assert await store.get("a") is None
    assert await store.get("b") == "2"
    assert sorted(await store.list_keys()) == ["b", "d"]


@pytest.mark.asyncio
async def test_token_store_round_trip():
    tokens = TokenStore(MemoryStore())

    assert await tokens.has_token() is False
    await tokens.set_tokens(TokenPair(access_token="access", refresh_token="refresh"))

    assert await tokens.get_access_token() == "access"
    assert await tokens.get_refresh_token() == "refresh"
    assert await tokens.has_token() is True


@pytest.mark.asyncio
async def test_clear_tokens_keeps_user_data():
    store = MemoryStore({
        StorageKeys.AUTH_TOKEN: "access",
        StorageKeys.REFRESH_TOKEN: "refresh",
        StorageKeys.USER_DATA: "{}",
    })

    await TokenStore(store).clear_tokens()

    assert await store.list_keys() == [StorageKeys.USER_DATA]


@pytest.mark.asyncio
async def test_clear_session_drops_everything_credential_related():
    store = MemoryStore({
        StorageKeys.AUTH_TOKEN: "access",
        StorageKeys.REFRESH_TOKEN: "refresh",
        StorageKeys.USER_DATA: "{}",
        "cache_GET_/products_{}": "{}",
    })

    await TokenStore(store).clear_session()

    assert await store.list_keys() == ["cache_GET_/products_{}"]


class TestRedisStore:

    @pytest.fixture
    def redis_client(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, redis_client):
        return RedisStore("redis://localhost:6379/0", namespace="app:", client=redis_client)

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, store, redis_client):
        redis_client.get.return_value = "value"

        assert await store.get("token") == "value"
        await store.set("token", "v2")

        redis_client.get.assert_awaited_once_with("app:token")
        redis_client.set.assert_awaited_once_with("app:token", "v2")

    @pytest.mark.asyncio
    async def test_set_many_uses_single_mset(self, store, redis_client):
        await store.set_many({"a": "1", "b": "2"})

        redis_client.mset.assert_awaited_once_with({"app:a": "1", "app:b": "2"})

    @pytest.mark.asyncio
    async def test_remove_many_skips_empty_batches(self, store, redis_client):
        await store.remove_many([])
        redis_client.delete.assert_not_awaited()

        await store.remove_many(["a", "b"])
        redis_client.delete.assert_awaited_once_with("app:a", "app:b")

    @pytest.mark.asyncio
    async def test_list_keys_strips_namespace(self, store, redis_client):
        async def scan_iter(match):
            assert match == "app:*"
            for key in ("app:cache_x", "app:token"):
                yield key

        redis_client.scan_iter = scan_iter

        assert await store.list_keys() == ["cache_x", "token"]

    @pytest.mark.asyncio
    async def test_redis_errors_become_storage_errors(self, store, redis_client):
        redis_client.get.side_effect = RedisConnectionError("Connection refused")

        with pytest.raises(StorageError) as exc_info:
            await store.get("token")

        assert exc_info.value.operation == "get"

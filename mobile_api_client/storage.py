import logging
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from pydantic import BaseModel

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageKeys:
    AUTH_TOKEN = "@mobile_client_auth_token"
    REFRESH_TOKEN = "@mobile_client_refresh_token"
    USER_DATA = "@mobile_client_user_data"


class PersistentStore(Protocol):
    """Durable string key-value storage the client is handed at construction."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def set_many(self, items: Mapping[str, str]) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def remove_many(self, keys: Iterable[str]) -> None: ...

    async def list_keys(self) -> List[str]: ...


class MemoryStore:
    """In-process store, used for tests and for running without a backend."""
    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def set_many(self, items: Mapping[str, str]) -> None:
        self._data.update(items)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def remove_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def list_keys(self) -> List[str]:
        return list(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class RedisStore:
    """Redis-backed store. Keys are namespaced so list_keys only sees ours."""
    def __init__(self, redis_url: str, namespace: str = "mobile_client:", client: Optional[aioredis.Redis] = None):
        self.namespace = namespace
        self.redis_client = client or aioredis.from_url(redis_url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis_client.get(self._key(key))
        except RedisError as e:
            raise StorageError("get", str(e)) from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.redis_client.set(self._key(key), value)
        except RedisError as e:
            raise StorageError("set", str(e)) from e

    async def set_many(self, items: Mapping[str, str]) -> None:
        if not items:
            return
        try:
            # MSET is atomic, so a token pair is never half written
            await self.redis_client.mset({self._key(k): v for k, v in items.items()})
        except RedisError as e:
            raise StorageError("set_many", str(e)) from e

    async def remove(self, key: str) -> None:
        try:
            await self.redis_client.delete(self._key(key))
        except RedisError as e:
            raise StorageError("remove", str(e)) from e

    async def remove_many(self, keys: Iterable[str]) -> None:
        namespaced = [self._key(k) for k in keys]
        if not namespaced:
            return
        try:
            await self.redis_client.delete(*namespaced)
        except RedisError as e:
            raise StorageError("remove_many", str(e)) from e

    async def list_keys(self) -> List[str]:
        # Use scan_iter to avoid blocking Redis with a large KEYS command
        try:
            return [
                key[len(self.namespace):]
                async for key in self.redis_client.scan_iter(match=f"{self.namespace}*")
            ]
        except RedisError as e:
            raise StorageError("list_keys", str(e)) from e

    async def close(self):
        await self.redis_client.aclose()


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str


class TokenStore:
    """Typed access to the persisted credentials."""
    def __init__(self, store: PersistentStore):
        self.store = store

    async def set_tokens(self, tokens: TokenPair) -> None:
        await self.store.set_many({
            StorageKeys.AUTH_TOKEN: tokens.access_token,
            StorageKeys.REFRESH_TOKEN: tokens.refresh_token,
        })

    async def get_access_token(self) -> Optional[str]:
        return await self.store.get(StorageKeys.AUTH_TOKEN)

    async def get_refresh_token(self) -> Optional[str]:
        return await self.store.get(StorageKeys.REFRESH_TOKEN)

    async def has_token(self) -> bool:
        return bool(await self.get_access_token())

    async def clear_tokens(self) -> None:
        await self.store.remove_many([StorageKeys.AUTH_TOKEN, StorageKeys.REFRESH_TOKEN])

    async def clear_session(self) -> None:
        """Drop both tokens and the cached user record."""
        await self.store.remove_many([
            StorageKeys.AUTH_TOKEN,
            StorageKeys.REFRESH_TOKEN,
            StorageKeys.USER_DATA,
        ])
        logger.info("Cleared stored credentials")

import json
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, Field

from .exceptions import CacheError
from .storage import PersistentStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


class ResourceClass(str, Enum):
    CATALOG = "catalog"
    TAXONOMY = "taxonomy"
    USER_PROFILE = "user_profile"
    CART = "cart"


class CacheConfig(BaseModel):
    enabled: bool = Field(default=True)
    key_prefix: str = Field(default="cache_", description="Prefix of cache entries in the persistent store")
    ttl_seconds: Dict[ResourceClass, float] = Field(
        default_factory=lambda: {
            ResourceClass.CATALOG: 5 * 60,
            ResourceClass.TAXONOMY: 30 * 60,
            ResourceClass.USER_PROFILE: 10 * 60,
            ResourceClass.CART: 60,
        },
        description="Default TTL in seconds per resource class",
    )

    def ttl_for(self, resource_class: ResourceClass) -> float:
        return self.ttl_seconds.get(resource_class, DEFAULT_TTL_SECONDS)


class CacheEntry(BaseModel):
    data: Any = None
    stored_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl

    def encode(self) -> str:
        return json.dumps({"data": self.data, "stored_at": self.stored_at, "ttl": self.ttl})

    @classmethod
    def decode(cls, key: str, raw: str) -> "CacheEntry":
        try:
            return cls(**json.loads(raw))
        except (TypeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            raise CacheError(key, str(e)) from e


def make_cache_key(method: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Generate cache key from request parameters"""
    # Sort params for consistent key generation
    normalized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    return f"{method.upper()}_{path}_{normalized}"


class CacheManager:
    """
    Two-tier response cache: a dict in front of the persistent store.

    The in-process tier answers warm hits without I/O; the persistent tier
    survives restarts. Persistent failures are logged and never raised.
    """
    def __init__(
        self,
        store: PersistentStore,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or CacheConfig()
        self.clock = clock
        self._memory: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def _storage_key(self, key: str) -> str:
        return f"{self.config.key_prefix}{key}"

    async def _read_persistent(self, key: str) -> Optional[CacheEntry]:
        raw = await self.store.get(self._storage_key(key))
        if raw is None:
            return None
        return CacheEntry.decode(key, raw)

    async def get(self, key: str) -> Optional[Any]:
        """Return fresh cached data, or None."""
        if not self.config.enabled:
            return None

        now = self.clock()
        entry = self._memory.get(key)
        if entry is not None:
            if entry.is_fresh(now):
                self._hits += 1
                return entry.data
            del self._memory[key]

        try:
            entry = await self._read_persistent(key)
            if entry is not None:
                if entry.is_fresh(now):
                    self._memory[key] = entry
                    self._hits += 1
                    return entry.data
                await self.store.remove(self._storage_key(key))
        except Exception as e:
            # Any store failure degrades to a miss
            logger.warning(f"Cache read error for {key}: {e}")

        self._misses += 1
        return None

    async def get_stale(self, key: str) -> Optional[Any]:
        """Return cached data regardless of age. Nothing is evicted."""
        if not self.config.enabled:
            return None

        entry = self._memory.get(key)
        if entry is None:
            try:
                entry = await self._read_persistent(key)
            except Exception as e:
                logger.warning(f"Cache read error for {key}: {e}")
                entry = None

        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return entry.data

    async def set(self, key: str, data: Any, ttl: float):
        """Cache response data in both tiers"""
        if not self.config.enabled:
            return

        entry = CacheEntry(data=data, stored_at=self.clock(), ttl=ttl)
        self._memory[key] = entry

        try:
            await self.store.set(self._storage_key(key), entry.encode())
        except Exception as e:
            # Data might not be JSON serializable or the store is down
            logger.warning(f"Cache write error for {key}: {e}")

    async def invalidate(self, pattern: str) -> int:
        """Remove every entry whose key contains pattern, from both tiers"""
        memory_keys = [key for key in self._memory if pattern in key]
        for key in memory_keys:
            del self._memory[key]

        removed = set(memory_keys)
        try:
            stored_keys = [
                key for key in await self.store.list_keys()
                if key.startswith(self.config.key_prefix) and pattern in key[len(self.config.key_prefix):]
            ]
            if stored_keys:
                await self.store.remove_many(stored_keys)
            removed.update(key[len(self.config.key_prefix):] for key in stored_keys)
        except Exception as e:
            logger.warning(f"Cache invalidation error for pattern '{pattern}': {e}")

        logger.debug(f"Invalidated {len(removed)} cache entries matching '{pattern}'")
        return len(removed)

    async def clear(self, include_persistent: bool = False):
        """Drop the in-process tier, and optionally every persisted entry"""
        self._memory.clear()
        if not include_persistent:
            return

        try:
            stored_keys = [key for key in await self.store.list_keys() if key.startswith(self.config.key_prefix)]
            if stored_keys:
                await self.store.remove_many(stored_keys)
        except Exception as e:
            logger.warning(f"Cache purge error: {e}")

    def __contains__(self, key: str) -> bool:
        return key in self._memory

    def get_stats(self) -> Dict[str, Union[int, float, bool]]:
        """Get cache statistics"""
        lookups = self._hits + self._misses
        return {
            "memory_entries": len(self._memory),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0,
            "enabled": self.config.enabled,
        }

"""
Caching for geocodes and routed distances.

Cache objects are created explicitly and passed to the distance estimator;
there is no module-level cache state. Entries expire after ``ttl_seconds``.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

from movematch.app.core.config import settings

logger = logging.getLogger(__name__)


class DistanceCache:
    """Interface shared by the cache backends. Values must be JSON-serializable."""

    def __init__(self, ttl_seconds: int = 3600, namespace: str = "movematch:distance"):
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace

    def make_key(self, *parts: Any) -> str:
        return ":".join([self.namespace, *(str(p) for p in parts)])

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def invalidate(self, key: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError


class MemoryDistanceCache(DistanceCache):
    """In-process cache, scoped to whoever holds the instance."""

    def __init__(self, ttl_seconds: int = 3600, namespace: str = "movematch:distance", clock=time.monotonic):
        super().__init__(ttl_seconds, namespace)
        self._clock = clock
        self._store: Dict[str, dict] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if not entry:
            return None

        if self._clock() > entry["expires_at"]:
            del self._store[key]
            return None

        return entry["data"]

    async def set(self, key: str, value: Any) -> None:
        self._store[key] = {
            "data": value,
            "expires_at": self._clock() + self.ttl_seconds
        }

    async def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    async def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class RedisDistanceCache(DistanceCache):
    """
    Redis-backed cache shared between workers.

    Redis errors are logged and treated as cache misses; the cache is never
    the reason a matching run fails.
    """

    def __init__(self, client, ttl_seconds: int = 3600, namespace: str = "movematch:distance"):
        super().__init__(ttl_seconds, namespace)
        self.client = client
        self._keys: set[str] = set()

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except Exception as exc:
            logger.warning("Distance cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.client.set(key, json.dumps(value), ex=self.ttl_seconds)
            self._keys.add(key)
        except Exception as exc:
            logger.warning("Distance cache write failed for %s: %s", key, exc)

    async def invalidate(self, key: str) -> None:
        self._keys.discard(key)
        try:
            await self.client.delete(key)
        except Exception as exc:
            logger.warning("Distance cache delete failed for %s: %s", key, exc)

    async def clear(self) -> None:
        # Only keys written through this instance are known without a SCAN
        for key in list(self._keys):
            await self.invalidate(key)


def build_distance_cache(redis_client=None) -> DistanceCache:
    """Create the cache backend selected by ``settings.distance_cache_backend``."""
    ttl = settings.distance_cache_ttl_seconds
    if settings.distance_cache_backend == "redis" and redis_client is not None:
        return RedisDistanceCache(redis_client, ttl_seconds=ttl)
    return MemoryDistanceCache(ttl_seconds=ttl)

"""Read-through cache for derived read models.

The trail progress snapshot is read far more often than it changes
(dashboards poll it while a trail generates), so ProgressTracker keeps a
copy here under `progress:<trail_id>`.

  read:   get → hit? return : load from repo → set_if_absent(ttl) → return
  write:  recompute → save to repo → set(ttl)

A read only fills an empty slot.  A reader that loaded an older snapshot
from the repo before a recompute landed therefore cannot overwrite the
fresh value the recompute just wrote.  TTL is the backstop.

The cache instance is handed to its users rather than looked up
globally.  The in-memory version takes a clock, so expiry can be tested
without waiting, and invalidation hooks that are told about every key
whose cached value is dropped or replaced.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from learning_trails.db.redis import redis_pool

logger = logging.getLogger(__name__)

InvalidationHook = Callable[[str], None]


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Store a value only when the key holds nothing.  Returns whether
        it was stored."""
        ...

    async def delete(self, key: str) -> None:
        """Explicitly invalidate a cached entry."""
        ...


class InMemoryCacheService:
    """Process-local cache with TTL enforced against an injectable clock."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        on_invalidate: Iterable[InvalidationHook] = (),
    ) -> None:
        self._clock = clock
        self._store: dict[str, tuple[str, float]] = {}
        self._hooks: list[InvalidationHook] = list(on_invalidate)

    def add_invalidation_hook(self, hook: InvalidationHook) -> None:
        self._hooks.append(hook)

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._store[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        replaced = await self.get(key) is not None
        self._store[key] = (value, self._clock() + ttl_seconds)
        if replaced:
            self._invalidated(key)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if await self.get(key) is not None:
            return False
        self._store[key] = (value, self._clock() + ttl_seconds)
        return True

    async def delete(self, key: str) -> None:
        if self._store.pop(key, None) is not None:
            self._invalidated(key)

    def _invalidated(self, key: str) -> None:
        for hook in self._hooks:
            try:
                hook(key)
            except Exception:
                logger.warning(
                    "Cache invalidation hook failed for %s", key, exc_info=True
                )


class RedisCacheService:
    """Redis-backed cache, shared across API replicas and the worker."""

    # Keeps cache keys apart from the task queue keys
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        stored = await self._redis.set(
            f"{self._PREFIX}{key}", value, ex=ttl_seconds, nx=True
        )
        return bool(stored)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")


# ---------------------------------------------------------------------------
# Module-level default, injected into ProgressTracker by services/pipeline.py
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()

from __future__ import annotations

import asyncio

from learning_trails.services.cache import CacheService, InMemoryCacheService
from tests.conftest import FakeClock


def test_in_memory_cache_satisfies_protocol() -> None:
    assert isinstance(InMemoryCacheService(), CacheService)


def test_value_expires_after_ttl() -> None:
    clock = FakeClock()
    cache = InMemoryCacheService(clock=clock)

    asyncio.run(cache.set("progress:1", "v", ttl_seconds=10))
    clock.advance(9.9)
    assert asyncio.run(cache.get("progress:1")) == "v"
    clock.advance(0.1)
    assert asyncio.run(cache.get("progress:1")) is None


def test_delete_invalidates() -> None:
    cache = InMemoryCacheService()
    asyncio.run(cache.set("k", "v", ttl_seconds=60))
    asyncio.run(cache.delete("k"))
    assert asyncio.run(cache.get("k")) is None


def test_set_if_absent_never_overwrites_a_live_value() -> None:
    clock = FakeClock()
    cache = InMemoryCacheService(clock=clock)

    async def scenario():
        first = await cache.set_if_absent("k", "fresh", 10)
        second = await cache.set_if_absent("k", "stale", 10)
        kept = await cache.get("k")
        clock.advance(10)
        after_expiry = await cache.set_if_absent("k", "next", 10)
        return first, second, kept, after_expiry, await cache.get("k")

    assert asyncio.run(scenario()) == (True, False, "fresh", True, "next")


def test_invalidation_hooks_see_deleted_and_replaced_keys() -> None:
    seen: list[str] = []
    cache = InMemoryCacheService(on_invalidate=[seen.append])
    late: list[str] = []
    cache.add_invalidation_hook(late.append)

    async def scenario():
        await cache.set("a", "1", 60)  # new key: nothing invalidated
        await cache.set("a", "2", 60)
        await cache.delete("a")
        await cache.delete("missing")

    asyncio.run(scenario())
    assert seen == ["a", "a"]
    assert late == ["a", "a"]


def test_failing_hook_does_not_break_the_cache() -> None:
    def broken(key: str) -> None:
        raise RuntimeError("subscriber gone")

    seen: list[str] = []
    cache = InMemoryCacheService(on_invalidate=[broken, seen.append])

    async def scenario():
        await cache.set("k", "v", 60)
        await cache.delete("k")
        return await cache.get("k")

    assert asyncio.run(scenario()) is None
    assert seen == ["k"]

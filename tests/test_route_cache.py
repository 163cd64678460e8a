"""
Tests for the shared route cache: keys, TTL, size bound and fetch coalescing.
"""

import asyncio
from types import SimpleNamespace

import pytest

from safepath.models.domain import Coordinate
from safepath.services import route_cache
from safepath.services.route_cache import RouteCache, route_cache_key


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock(monkeypatch):
    fake = _Clock()
    monkeypatch.setattr(route_cache, "time", SimpleNamespace(monotonic=fake))
    return fake


class TestCacheKey:

    def test_rounds_to_four_decimals(self):
        a = route_cache_key(Coordinate(40.00001, -74.00001), Coordinate(41.0, -75.0))
        b = route_cache_key(Coordinate(40.00002, -74.00002), Coordinate(41.0, -75.0))
        assert a == b
        assert a.endswith("#none")

    def test_avoid_hint_changes_key(self):
        origin, destination = Coordinate(40.0, -74.0), Coordinate(41.0, -75.0)
        square = [Coordinate(40.5, -74.5), Coordinate(40.6, -74.5), Coordinate(40.6, -74.4)]
        assert route_cache_key(origin, destination) != route_cache_key(origin, destination, [square])


class TestRouteCache:

    def test_get_and_set(self, clock):
        cache = RouteCache(ttl_seconds=60)
        cache.set("k", ["route"])
        assert cache.get("k") == ["route"]
        assert len(cache) == 1

    def test_entries_expire(self, clock):
        cache = RouteCache(ttl_seconds=60)
        cache.set("k", ["route"])
        clock.now += 61
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_evict_expired(self, clock):
        cache = RouteCache(ttl_seconds=60)
        cache.set("old", 1)
        clock.now += 30
        cache.set("new", 2)
        clock.now += 45
        cache.evict_expired()
        assert cache.get("old") is None
        assert cache.get("new") == 2

    def test_max_size_drops_earliest_expiring(self, clock):
        cache = RouteCache(ttl_seconds=60, max_size=2)
        cache.set("a", 1)
        clock.now += 1
        cache.set("b", 2)
        clock.now += 1
        cache.set("c", 3)
        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3

    def test_clear(self):
        cache = RouteCache()
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestGetOrFetch:

    def test_failure_is_not_cached(self):
        cache = RouteCache()
        calls = []

        async def failing():
            calls.append(1)
            raise RuntimeError("provider down")

        async def scenario():
            for _ in range(2):
                with pytest.raises(RuntimeError):
                    await cache.get_or_fetch("k", failing)

        asyncio.run(scenario())
        assert len(calls) == 2
        assert cache.get("k") is None

    def test_waiters_see_the_same_failure(self):
        cache = RouteCache()
        calls = []

        async def failing():
            calls.append(1)
            await asyncio.sleep(0.01)
            raise RuntimeError("provider down")

        async def scenario():
            return await asyncio.gather(
                cache.get_or_fetch("k", failing),
                cache.get_or_fetch("k", failing),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())
        assert len(calls) == 1
        assert all(isinstance(r, RuntimeError) for r in results)

    def test_value_cached_after_fetch(self):
        cache = RouteCache()
        calls = []

        async def fetch():
            calls.append(1)
            return ["route"]

        async def scenario():
            first = await cache.get_or_fetch("k", fetch)
            second = await cache.get_or_fetch("k", fetch)
            return first, second

        assert asyncio.run(scenario()) == (["route"], ["route"])
        assert len(calls) == 1

"""Unit tests for sourcereg.ttl_cache."""

from __future__ import annotations

import pytest

from sourcereg.ttl_cache import TtlCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTtlCache:
    def test_get_before_expiry(self) -> None:
        clock = FakeClock()
        cache: TtlCache[str] = TtlCache(60, clock=clock)
        cache.set("robots", "value")
        clock.now += 59.9
        assert cache.get("robots") == "value"

    def test_expired_entry_is_a_miss_and_dropped(self) -> None:
        clock = FakeClock()
        cache: TtlCache[str] = TtlCache(60, clock=clock)
        cache.set("robots", "value")
        clock.now += 60
        assert cache.get("robots") is None
        assert len(cache) == 0

    def test_per_entry_ttl_overrides_default(self) -> None:
        clock = FakeClock()
        cache: TtlCache[int] = TtlCache(60, clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)
        clock.now += 10
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_invalidate_and_clear(self) -> None:
        cache: TtlCache[int] = TtlCache(60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

    def test_purge_expired(self) -> None:
        clock = FakeClock()
        cache: TtlCache[int] = TtlCache(60, clock=clock)
        cache.set("old", 1, ttl=1)
        cache.set("fresh", 2)
        clock.now += 2
        assert cache.purge_expired() == 1
        assert len(cache) == 1


class TestGetOrRefresh:
    async def test_loader_called_once_while_fresh(self) -> None:
        calls = 0

        async def loader() -> list[str]:
            nonlocal calls
            calls += 1
            return ["book"]

        cache: TtlCache[list[str]] = TtlCache(60)
        assert await cache.get_or_refresh("catalog", loader) == ["book"]
        assert await cache.get_or_refresh("catalog", loader) == ["book"]
        assert calls == 1

    async def test_reloads_after_expiry(self) -> None:
        clock = FakeClock()
        values = iter([["v1"], ["v2"]])

        async def loader() -> list[str]:
            return next(values)

        cache: TtlCache[list[str]] = TtlCache(60, clock=clock)
        assert await cache.get_or_refresh("catalog", loader) == ["v1"]
        clock.now += 61
        assert await cache.get_or_refresh("catalog", loader) == ["v2"]

    async def test_loader_error_leaves_cache_empty(self) -> None:
        async def loader() -> list[str]:
            raise RuntimeError("catalog unavailable")

        cache: TtlCache[list[str]] = TtlCache(60)
        with pytest.raises(RuntimeError):
            await cache.get_or_refresh("catalog", loader)
        assert cache.get("catalog") is None

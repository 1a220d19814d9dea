import asyncio

import pytest

from ro_subtitles.cache import SingleFlight, TTLCache


pytestmark = pytest.mark.caching


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(default_ttl=60, clock=clock)
    cache.set("a", 1)
    clock.advance(59)
    assert cache.get("a") == 1
    clock.advance(1)
    assert cache.get("a") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = TTLCache(default_ttl=600, clock=clock)
    cache.set("short", "x", ttl=5)
    cache.set("long", "y")
    clock.advance(10)
    assert "short" not in cache
    assert cache.get("long") == "y"


def test_no_default_ttl_keeps_entries():
    clock = FakeClock()
    cache = TTLCache(default_ttl=None, clock=clock)
    cache.set("k", "v")
    clock.advance(10 ** 9)
    assert cache.get("k") == "v"


def test_lru_eviction_respects_recent_reads():
    cache = TTLCache(default_ttl=None, max_size=2)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_get_or_create_runs_factory_once():
    cache = TTLCache(default_ttl=None, max_size=10)
    calls = []

    def factory():
        calls.append(1)
        return object()

    first = cache.get_or_create("key", factory)
    second = cache.get_or_create("key", factory)
    assert first is second
    assert len(calls) == 1


def test_delete_and_clear():
    cache = TTLCache()
    cache.set("a", 1)
    cache.set("b", 2)
    cache.delete("a")
    assert "a" not in cache
    cache.clear()
    assert len(cache) == 0


def test_single_flight_shares_one_task():
    flight = SingleFlight()
    calls = []

    async def producer():
        calls.append(1)
        await asyncio.sleep(0.01)
        return "done"

    async def main():
        results = await asyncio.gather(*(flight.do("k", producer) for _ in range(10)))
        return results

    results = asyncio.run(main())
    assert results == ["done"] * 10
    assert len(calls) == 1
    assert len(flight) == 0


def test_single_flight_releases_key_on_failure():
    flight = SingleFlight()
    attempts = []

    async def failing():
        attempts.append(1)
        raise RuntimeError("boom")

    async def ok():
        attempts.append(1)
        return 42

    async def main():
        with pytest.raises(RuntimeError):
            await flight.do("k", failing)
        await asyncio.sleep(0)
        assert "k" not in flight
        return await flight.do("k", ok)

    assert asyncio.run(main()) == 42
    assert len(attempts) == 2


def test_single_flight_start_reports_owner():
    flight = SingleFlight()

    async def producer():
        await asyncio.sleep(0)
        return 1

    async def main():
        task, owner = flight.start("k", producer)
        joined, joined_owner = flight.start("k", producer)
        assert owner and not joined_owner
        assert joined is task
        assert flight.join("k") is task
        return await task

    assert asyncio.run(main()) == 1

import asyncio

import pytest

from refreshstore import ExpiringCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_set_get_and_default_ttl() -> None:
    cache = ExpiringCache(30)
    assert cache.check_period == 10
    assert cache.get("missing") is None
    assert cache.get("missing", "fallback") == "fallback"

    cache.set("key", None)
    assert "key" in cache
    assert cache.get("key", "fallback") is None
    assert cache.ttl("key") == 30
    assert cache.ttl("missing") is None
    cache.set("other", 2, ttl=5)
    assert cache.mget(["key", "other", "missing"]) == {"key": None, "other": 2}
    assert sorted(cache.keys()) == ["key", "other"]
    assert len(cache) == 2


def test_expiry_keeps_value_and_notifies_once_per_cycle() -> None:
    clock = FakeClock()
    cache = ExpiringCache(10, check_period=1, clock=clock)
    events = []
    cache.add_expiry_listener(lambda key, value: events.append((key, value)))
    cache.set("key", "value")

    clock.now = 9.9
    assert cache.check_expired() == []
    clock.now = 10
    assert cache.check_expired() == ["key"]
    assert cache.get("key") == "value"
    assert cache.is_stale("key")

    clock.now = 15
    assert cache.check_expired() == []
    clock.now = 20
    assert cache.check_expired() == ["key"]
    assert events == [("key", "value"), ("key", "value")]

    cache.set("key", "fresh")
    assert not cache.is_stale("key")


def test_zero_ttl_never_expires() -> None:
    clock = FakeClock()
    cache = ExpiringCache(10, clock=clock)
    cache.set("pinned", 1, ttl=0)
    clock.now = 10_000
    assert cache.check_expired() == []
    with pytest.raises(ValueError):
        cache.set("bad", 1, ttl=-1)


def test_listener_failure_does_not_block_others() -> None:
    clock = FakeClock()
    cache = ExpiringCache(1, clock=clock)
    seen = []

    def broken(key, value):
        raise RuntimeError("listener bug")

    cache.add_expiry_listener(broken)
    cache.add_expiry_listener(lambda key, value: seen.append(key))
    cache.set("a", 1)
    clock.now = 2
    cache.check_expired()
    assert seen == ["a"]

    cache.remove_expiry_listener(broken)
    cache.remove_expiry_listener(broken)


def test_invalid_construction() -> None:
    with pytest.raises(ValueError):
        ExpiringCache(0)
    with pytest.raises(ValueError):
        ExpiringCache(10, check_period=-1)


@pytest.mark.asyncio
async def test_ticker_scans_periodically() -> None:
    cache = ExpiringCache(0.02, check_period=0.01)
    expired = []
    cache.add_expiry_listener(lambda key, value: expired.append(key))
    cache.set("key", "value")
    cache.start()
    cache.start()
    assert cache.running
    await asyncio.sleep(0.1)
    await cache.close()
    assert not cache.running
    assert "key" in expired
    assert cache.get("key") == "value"

import pytest

from src.app.services.cache import BoundedTTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache: BoundedTTLCache[str] = BoundedTTLCache(max_entries=4, ttl_seconds=300, clock=clock)
    cache.set("a", "value")

    clock.now = 299.0
    assert cache.get("a") == "value"
    clock.now = 300.0
    assert cache.get("a") is None
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted():
    cache: BoundedTTLCache[int] = BoundedTTLCache(max_entries=2, ttl_seconds=60, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_purge_expired_counts_removed_entries():
    clock = FakeClock()
    cache: BoundedTTLCache[int] = BoundedTTLCache(max_entries=10, ttl_seconds=10, clock=clock)
    cache.set("a", 1)
    clock.now = 5.0
    cache.set("b", 2)
    clock.now = 12.0

    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_cache_requires_capacity():
    with pytest.raises(ValueError):
        BoundedTTLCache(max_entries=0, ttl_seconds=10)

from __future__ import annotations

import pytest

from reviewfeed_service.memory_cache import NoOpCache, ProfileCache, TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ── TTL cache ────────────────────────────────────────────────────────────


def test_ttl_cache_hit_before_expiry_miss_after():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    cache.set("restaurant:r1", {"name": "Casa"})

    clock.now += 299
    assert cache.get("restaurant:r1") == {"name": "Casa"}

    clock.now += 2
    assert cache.get("restaurant:r1") is None
    # expired entry is dropped on the read that found it stale
    assert len(cache) == 0


def test_ttl_cache_stats():
    cache = TTLCache(ttl_seconds=60, clock=FakeClock())
    cache.set("a", 1)
    cache.get("a")
    cache.get("b")

    assert cache.stats() == {"size": 1, "hits": 1, "misses": 1, "hit_rate": 50.0}

    cache.clear()
    assert cache.stats() == {"size": 0, "hits": 0, "misses": 0, "hit_rate": 0.0}


def test_ttl_cache_delete():
    cache = TTLCache(ttl_seconds=60)
    cache.set("a", 1)
    cache.delete("a")
    cache.delete("missing")
    assert cache.get("a") is None


# ── Profile cache ────────────────────────────────────────────────────────


def test_profile_cache_evicts_oldest_inserted():
    cache = ProfileCache(max_size=2, ttl_seconds=300, clock=FakeClock())
    cache.set("u1", "one")
    cache.set("u2", "two")

    # reading u1 does not protect it from eviction
    assert cache.get("u1") == "one"
    cache.set("u3", "three")

    assert cache.keys() == ["u2", "u3"]
    assert cache.get("u1") is None


def test_profile_cache_access_order_mode():
    cache = ProfileCache(max_size=2, ttl_seconds=300, clock=FakeClock(), access_order=True)
    cache.set("u1", "one")
    cache.set("u2", "two")

    assert cache.get("u1") == "one"
    cache.set("u3", "three")

    assert cache.keys() == ["u1", "u3"]


def test_profile_cache_update_does_not_evict():
    cache = ProfileCache(max_size=2, ttl_seconds=300, clock=FakeClock())
    cache.set("u1", "one")
    cache.set("u2", "two")
    cache.set("u1", "uno")

    assert len(cache) == 2
    assert cache.get("u1") == "uno"
    assert cache.keys() == ["u1", "u2"]


def test_profile_cache_ttl_is_independent_of_eviction():
    clock = FakeClock()
    cache = ProfileCache(max_size=10, ttl_seconds=300, clock=clock)
    cache.set("u1", "one")

    clock.now += 301
    assert cache.get("u1") is None
    assert len(cache) == 0


def test_profile_cache_requires_capacity():
    with pytest.raises(ValueError):
        ProfileCache(max_size=0, ttl_seconds=300)


# ── No-op cache ──────────────────────────────────────────────────────────


def test_noop_cache_never_stores():
    cache = NoOpCache()
    cache.set("a", 1)

    assert cache.get("a") is None
    assert len(cache) == 0
    assert cache.stats()["misses"] == 1

from local_cache import LocalCache, get_global_metrics_cache, reset_global_metrics_cache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _cache(max_size: int = 3, ttl: float = 60.0) -> tuple[LocalCache, FakeClock]:
    clock = FakeClock()
    cache = LocalCache(
        max_size=max_size,
        default_ttl_seconds=ttl,
        cleanup_interval_seconds=None,
        clock=clock,
    )
    return cache, clock


def test_get_counts_hits_and_misses() -> None:
    cache, _ = _cache()
    cache.set("a", {"score": 4})
    assert cache.get("a") == {"score": 4}
    assert cache.get("missing") is None

    stats = cache.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 50.0

    cache.reset_stats()
    stats = cache.get_stats()
    assert stats["hits"] == 0
    assert stats["hit_rate"] == 0
    assert stats["size"] == 1


def test_entries_expire_after_ttl() -> None:
    cache, clock = _cache(ttl=10)
    cache.set("a", 1)
    cache.set("b", 2, ttl_seconds=100)

    clock.now += 10
    assert cache.get("a") is None
    assert cache.has("b")
    assert cache.get_stats()["expirations"] == 1


def test_least_recently_used_entry_is_evicted() -> None:
    cache, clock = _cache(max_size=2)
    cache.set("a", 1)
    clock.now += 1
    cache.set("b", 2)
    clock.now += 1
    cache.get("a")
    clock.now += 1
    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")
    assert cache.has("c")
    assert cache.get_stats()["evictions"] == 1


def test_eviction_ties_go_to_earliest_inserted() -> None:
    cache, _ = _cache(max_size=3)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    cache.set("d", 4)

    assert not cache.has("a")
    assert cache.has("b")
    assert cache.has("c")
    assert cache.has("d")


def test_has_removes_expired_entry() -> None:
    cache, clock = _cache(ttl=5)
    cache.set("a", 1)

    clock.now += 5
    assert not cache.has("a")
    assert cache.size == 0
    stats = cache.get_stats()
    assert stats["expirations"] == 1
    assert stats["misses"] == 0


def test_has_does_not_touch_stats_or_recency() -> None:
    cache, clock = _cache(max_size=2)
    cache.set("a", 1)
    clock.now += 1
    cache.set("b", 2)
    clock.now += 1
    assert cache.has("a")
    clock.now += 1
    cache.set("c", 3)

    assert not cache.has("a")
    assert cache.has("b")
    stats = cache.get_stats()
    assert stats["hits"] == 0
    assert stats["misses"] == 0


def test_overwriting_existing_key_does_not_evict() -> None:
    cache, _ = _cache(max_size=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)

    assert len(cache) == 2
    assert cache.get("a") == 10
    assert cache.get_stats()["evictions"] == 0


def test_cleanup_removes_only_expired_entries() -> None:
    cache, clock = _cache()
    cache.set("short", 1, ttl_seconds=5)
    cache.set("long", 2, ttl_seconds=50)

    clock.now += 6
    assert cache.cleanup() == 1
    assert cache.size == 1


def test_destroy_clears_entries() -> None:
    cache, _ = _cache()
    cache.set("a", 1)
    cache.destroy()
    assert cache.size == 0


def test_global_cache_is_shared_until_reset() -> None:
    reset_global_metrics_cache()
    first = get_global_metrics_cache()
    assert get_global_metrics_cache() is first

    reset_global_metrics_cache()
    assert get_global_metrics_cache() is not first
    reset_global_metrics_cache()

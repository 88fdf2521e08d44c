"""
tinyapp core -- App bundle LRU

The app table holds at most N bundles. Inserting N+1 evicts the entry with
the smallest cachedAt among those present before the insert.
"""

import json

import pytest

from engine.core.cache import APP_CACHE_KEY, CacheKind, LocalCache, MemoryCacheStorage


def bundle(name: str) -> dict:
    return {"manifest": {"name": name}, "params": {}, "html": f"<p>{name}</p>"}


def put_at(cache: LocalCache, clock, t: int, app_id: str) -> None:
    clock.set(t)
    cache.put(CacheKind.APP, app_id, bundle(app_id))


class TestEviction:
    def test_fifth_insert_evicts_oldest(self, cache, clock):
        """Capacity 4, A-D at t=1..4, E at t=5 -> {B, C, D, E}."""
        for t, app_id in enumerate("ABCDE", start=1):
            put_at(cache, clock, t, app_id)

        assert sorted(cache.keys(CacheKind.APP)) == ["B", "C", "D", "E"]
        assert cache.get(CacheKind.APP, "A") is None
        assert cache.size(CacheKind.APP) == 4

    def test_rewrite_refreshes_recency(self, cache, clock):
        """Writing A again at t=5 makes B the oldest."""
        for t, app_id in enumerate("ABCD", start=1):
            put_at(cache, clock, t, app_id)
        put_at(cache, clock, 5, "A")
        put_at(cache, clock, 6, "E")

        assert sorted(cache.keys(CacheKind.APP)) == ["A", "C", "D", "E"]

    def test_read_does_not_refresh_recency(self, cache, clock):
        """A cache hit is not a write; A is still the oldest."""
        for t, app_id in enumerate("ABCD", start=1):
            put_at(cache, clock, t, app_id)

        assert cache.get(CacheKind.APP, "A") is not None
        put_at(cache, clock, 5, "E")

        assert cache.get(CacheKind.APP, "A") is None

    def test_invalidate_frees_a_slot(self, cache, clock):
        for t, app_id in enumerate("ABCD", start=1):
            put_at(cache, clock, t, app_id)
        cache.invalidate(CacheKind.APP, "B")
        put_at(cache, clock, 5, "E")

        assert sorted(cache.keys(CacheKind.APP)) == ["A", "C", "D", "E"]

    def test_equal_timestamps_evict_first_written(self, cache, clock):
        for app_id in "ABCDE":
            put_at(cache, clock, 7, app_id)

        assert cache.get(CacheKind.APP, "A") is None
        assert cache.size(CacheKind.APP) == 4

    def test_every_insert_past_capacity_evicts_exactly_one(self, cache, clock):
        for t in range(1, 21):
            put_at(cache, clock, t, f"app{t}")
            assert cache.size(CacheKind.APP) == min(t, 4)

        assert sorted(cache.keys(CacheKind.APP)) == ["app17", "app18", "app19", "app20"]

    def test_many_rewrites_of_one_key(self, cache, clock):
        """Repeated writes of one id never count as extra entries."""
        put_at(cache, clock, 1, "A")
        for t in range(2, 200):
            put_at(cache, clock, t, "B")
        put_at(cache, clock, 200, "C")
        put_at(cache, clock, 201, "D")
        put_at(cache, clock, 202, "E")

        assert sorted(cache.keys(CacheKind.APP)) == ["B", "C", "D", "E"]

    def test_other_kinds_are_unbounded(self, cache):
        for i in range(10):
            cache.put(CacheKind.SESSION, f"s{i}", {"name": f"s{i}", "data": {}})

        assert cache.size(CacheKind.SESSION) == 10


class TestCapacity:
    def test_capacity_one(self, clock):
        cache = LocalCache(MemoryCacheStorage(), app_capacity=1, clock=clock)
        put_at(cache, clock, 1, "A")
        put_at(cache, clock, 2, "B")

        assert cache.keys(CacheKind.APP) == ["B"]

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            LocalCache(MemoryCacheStorage(), app_capacity=0)

    def test_default_capacity_is_four(self, cache):
        assert cache.app_capacity == 4


class TestEvictionIsPersisted:
    def test_evicted_entry_removed_from_storage(self, cache, storage, clock):
        for t, app_id in enumerate("ABCDE", start=1):
            put_at(cache, clock, t, app_id)

        stored = json.loads(storage.items[APP_CACHE_KEY])
        assert sorted(stored) == ["B", "C", "D", "E"]

    def test_reload_over_capacity_evicts_oldest(self, storage):
        """A stored table larger than the capacity is trimmed on load."""
        table = {
            app_id: {**bundle(app_id), "cachedAt": t}
            for t, app_id in zip([5, 1, 3, 2, 4], "ABCDE")
        }
        storage.items[APP_CACHE_KEY] = json.dumps(table)

        cache = LocalCache(storage, app_capacity=3)

        assert sorted(cache.keys(CacheKind.APP)) == ["A", "C", "E"]
        assert sorted(json.loads(storage.items[APP_CACHE_KEY])) == ["A", "C", "E"]

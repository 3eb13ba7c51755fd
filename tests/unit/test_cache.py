"""Unit tests for the heat map snapshot cache."""
import time

from classfinder.cache import SimpleTTLCache


class TestSimpleTTLCache:
    """Test the TTL cache wrapper."""

    def test_cache_set_and_get(self):
        cache = SimpleTTLCache[str](ttl=60)

        cache.set("occupancy:buildings", "snapshot")
        assert cache.get("occupancy:buildings") == "snapshot"

    def test_cache_get_nonexistent_key(self):
        cache = SimpleTTLCache[str](ttl=60)

        assert cache.get("nonexistent") is None

    def test_cache_ttl_expiration(self):
        """Values disappear once the TTL has elapsed."""
        cache = SimpleTTLCache[str](ttl=1)

        cache.set("key1", "value1")
        assert cache.get("key1") == "value1"

        time.sleep(1.1)

        assert cache.get("key1") is None

    def test_get_or_set_computes_once(self):
        cache = SimpleTTLCache[list](ttl=60)
        calls = []

        def compute():
            calls.append(1)
            return ["GK301"]

        assert cache.get_or_set("rooms", compute) == ["GK301"]
        assert cache.get_or_set("rooms", compute) == ["GK301"]
        assert len(calls) == 1

    def test_invalidate_prefix_only_drops_matching_keys(self):
        cache = SimpleTTLCache[int](ttl=60)
        cache.set("occupancy:buildings:2030-03-04T08:00", 1)
        cache.set("occupancy:floors:1:2030-03-04T08:00", 2)
        cache.set("other:key", 3)

        assert cache.invalidate_prefix("occupancy:") == 2
        assert len(cache) == 1
        assert cache.get("other:key") == 3

    def test_cache_pop_nonexistent(self):
        cache = SimpleTTLCache[str](ttl=60)

        cache.pop("nonexistent")
        assert len(cache) == 0

    def test_cache_clear(self):
        cache = SimpleTTLCache[str](ttl=60)
        cache.set("key1", "value1")
        cache.set("key2", "value2")

        cache.clear()

        assert len(cache) == 0

    def test_cache_maxsize(self):
        """The oldest entry is evicted once maxsize is reached."""
        cache = SimpleTTLCache[str](ttl=60, maxsize=2)

        cache.set("key1", "value1")
        cache.set("key2", "value2")
        cache.set("key3", "value3")

        assert len(cache) == 2
        assert cache.get("key3") == "value3"

"""Unit tests for the response cache."""

import asyncio
import math

import pytest

from fetch_runtime.cache import Cache, CacheEntry, MemoryCacheStorage
from fetch_runtime.envelope import ResponseEnvelope
from fetch_runtime.errors import TransportError


class TestCache:
    """Test storage, freshness and garbage collection."""

    def test_set_and_get(self):
        cache = Cache()
        envelope = ResponseEnvelope.success({"id": 1})

        cache.set("GET_/users", envelope, cache_time=10, garbage_collection=math.inf)

        entry = cache.get("GET_/users")
        assert entry is not None
        assert entry.envelope is envelope
        assert entry.cache_time == 10

    def test_failure_not_cacheable(self):
        cache = Cache()
        envelope = ResponseEnvelope.failure(TransportError("boom", status=500), status=500)

        with pytest.raises(ValueError):
            cache.set("GET_/users", envelope, cache_time=10, garbage_collection=10)
        assert cache.get("GET_/users") is None

    def test_is_fresh(self):
        entry = CacheEntry(
            envelope=ResponseEnvelope.success(1),
            cache_time=5,
            garbage_collection=10,
            timestamp=100.0,
        )

        assert Cache.is_fresh(entry, now=105.0) is True
        assert Cache.is_fresh(entry, now=105.1) is False

    def test_get_fresh_ignores_stale(self):
        cache = Cache()
        cache.set("k", ResponseEnvelope.success(1), cache_time=0, garbage_collection=math.inf)
        entry = cache.get("k")
        assert entry is not None
        entry.timestamp -= 1

        assert cache.get_fresh("k") is None
        # Stale entries stay in storage until garbage collected
        assert cache.get("k") is not None

    def test_set_without_running_loop(self):
        """Synchronous writes work; the entry lives until deleted."""
        cache = Cache()
        cache.set("k", ResponseEnvelope.success(1), cache_time=1, garbage_collection=0.01)

        assert cache.get("k") is not None

    def test_delete_and_clear(self):
        cache = Cache()
        cache.set("a", ResponseEnvelope.success(1), cache_time=1, garbage_collection=math.inf)
        cache.set("b", ResponseEnvelope.success(2), cache_time=1, garbage_collection=math.inf)

        cache.delete("a")
        assert cache.get("a") is None

        cache.clear()
        assert cache.storage.keys() == []

    @pytest.mark.asyncio
    async def test_garbage_collection(self):
        cache = Cache()
        cache.set("k", ResponseEnvelope.success(1), cache_time=100, garbage_collection=0.01)

        await asyncio.sleep(0.05)

        assert cache.get("k") is None

    @pytest.mark.asyncio
    async def test_rewrite_reschedules_collection(self):
        cache = Cache()
        cache.set("k", ResponseEnvelope.success(1), cache_time=100, garbage_collection=0.01)
        cache.set("k", ResponseEnvelope.success(2), cache_time=100, garbage_collection=math.inf)

        await asyncio.sleep(0.05)

        entry = cache.get("k")
        assert entry is not None
        assert entry.envelope.data == 2

    def test_custom_storage(self):
        class RecordingStorage(MemoryCacheStorage):
            def __init__(self) -> None:
                super().__init__()
                self.writes: list[str] = []

            def set(self, key: str, entry: CacheEntry) -> None:
                self.writes.append(key)
                super().set(key, entry)

        storage = RecordingStorage()
        cache = Cache(storage)
        cache.set("k", ResponseEnvelope.success(1), cache_time=1, garbage_collection=math.inf)

        assert storage.writes == ["k"]
        assert cache.storage is storage

"""Response cache keyed by cache key.

TTL (``cache_time``) decides freshness for cache hits. Garbage collection
decides memory lifetime: every write schedules removal of the entry after
``garbage_collection`` seconds, independently of the TTL.

Storage is pluggable; anything implementing CacheStorage works (the
default is an in-memory dict).
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .envelope import ResponseEnvelope

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached envelope with its freshness and lifetime settings."""

    envelope: ResponseEnvelope
    cache_time: float
    garbage_collection: float
    timestamp: float = field(default_factory=time.time)


@runtime_checkable
class CacheStorage(Protocol):
    """Key -> CacheEntry store. Persistence mechanism is up to the implementation."""

    def get(self, key: str) -> CacheEntry | None: ...

    def set(self, key: str, entry: CacheEntry) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryCacheStorage:
    """Default in-memory storage."""

    def __init__(self) -> None:
        self._data: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        return self._data.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._data[key] = entry

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class Cache:
    """Keyed store of response envelopes with TTL and GC timers.

    Contract:
    - get(key) -> CacheEntry | None
    - set(key, envelope, cache_time, garbage_collection) -> None
    - delete(key) -> None
    - is_fresh(entry) -> bool   (now - timestamp <= cache_time)
    """

    def __init__(self, storage: CacheStorage | None = None) -> None:
        self.storage: CacheStorage = storage if storage is not None else MemoryCacheStorage()
        self._gc_handles: dict[str, asyncio.TimerHandle] = {}

    def get(self, cache_key: str) -> CacheEntry | None:
        return self.storage.get(cache_key)

    def get_fresh(self, cache_key: str) -> CacheEntry | None:
        """Return the entry only if it is still fresh."""
        entry = self.storage.get(cache_key)
        if entry is not None and self.is_fresh(entry):
            return entry
        return None

    def set(
        self,
        cache_key: str,
        envelope: ResponseEnvelope,
        cache_time: float,
        garbage_collection: float,
    ) -> CacheEntry:
        """Store a successful envelope and (re)schedule its garbage collection."""
        if not envelope.is_success:
            raise ValueError("Only successful envelopes can be cached")

        entry = CacheEntry(
            envelope=envelope,
            cache_time=cache_time,
            garbage_collection=garbage_collection,
        )
        self.storage.set(cache_key, entry)
        self._schedule_gc(cache_key, garbage_collection)
        logger.debug(f"Cached {cache_key} (cache_time={cache_time}s)")
        return entry

    def delete(self, cache_key: str) -> None:
        """Evict an entry and cancel its GC timer."""
        handle = self._gc_handles.pop(cache_key, None)
        if handle is not None:
            handle.cancel()
        self.storage.delete(cache_key)

    def clear(self) -> None:
        for cache_key in list(self.storage.keys()):
            self.delete(cache_key)

    @staticmethod
    def is_fresh(entry: CacheEntry, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - entry.timestamp <= entry.cache_time

    def _schedule_gc(self, cache_key: str, garbage_collection: float) -> None:
        handle = self._gc_handles.pop(cache_key, None)
        if handle is not None:
            handle.cancel()
        if not math.isfinite(garbage_collection):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (synchronous use); entry lives until deleted explicitly
            return
        self._gc_handles[cache_key] = loop.call_later(
            max(garbage_collection, 0.0), self._collect, cache_key
        )

    def _collect(self, cache_key: str) -> None:
        self._gc_handles.pop(cache_key, None)
        self.storage.delete(cache_key)
        logger.debug(f"Garbage collected {cache_key}")

"""
In-process caches for restaurant/menu lookups and visited user profiles

Both caches are plain objects injected into the pipeline rather than module
globals, so tests can swap in a NoOpCache. Mutations never await, which makes
each read-modify-write atomic on the event loop; a threaded caller would need
a lock per cache.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

Clock = Callable[[], float]


class KeyValueCache(ABC):
    """Common interface and hit/miss accounting"""

    def __init__(self):
        self.hits = 0
        self.misses = 0

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss"""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value"""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Drop a key if present"""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry and reset counters"""

    @abstractmethod
    def __len__(self) -> int: ...

    def _record(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "size": len(self),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total * 100, 1) if total > 0 else 0.0,
        }


class TTLCache(KeyValueCache):
    """Unbounded map with a fixed per-entry TTL; expired entries are dropped lazily on read"""

    def __init__(self, ttl_seconds: float, clock: Clock = time.time):
        super().__init__()
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry and self.clock() - entry[1] < self.ttl_seconds:
            self._record(True)
            return entry[0]
        if entry:
            del self._entries[key]
        self._record(False)
        return None

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, self.clock())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)


class ProfileCache(KeyValueCache):
    """Bounded profile cache with TTL.

    By default the oldest *inserted* entry is evicted on overflow, and reads
    do not refresh an entry's position. ``access_order=True`` switches to
    true LRU, where every hit moves the entry to the most recent position.
    TTL is checked independently of eviction.
    """

    def __init__(
        self,
        max_size: int,
        ttl_seconds: float,
        clock: Clock = time.time,
        access_order: bool = False,
    ):
        super().__init__()
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.access_order = access_order
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry and self.clock() - entry[1] < self.ttl_seconds:
            if self.access_order:
                self._entries.move_to_end(key)
            self._record(True)
            return entry[0]
        if entry:
            del self._entries[key]
        self._record(False)
        return None

    def set(self, key: str, value: Any) -> None:
        if key in self._entries:
            self._entries[key] = (value, self.clock())
            if self.access_order:
                self._entries.move_to_end(key)
            return

        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (value, self.clock())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def keys(self) -> list:
        """Keys from oldest to newest eviction position"""
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)


class NoOpCache(KeyValueCache):
    """Never stores anything; every read is a miss"""

    def get(self, key: str) -> Optional[Any]:
        self._record(False)
        return None

    def set(self, key: str, value: Any) -> None:
        pass  # intentional no-op

    def delete(self, key: str) -> None:
        pass

    def clear(self) -> None:
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return 0

"""
Bounded least-recently-used map used to memoise raster samples.
"""

from collections import OrderedDict
from threading import Lock
from typing import Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedLRU(Generic[K, V]):
    """
    Fixed-capacity map that evicts the least recently used key on overflow.

    ``None`` is a legitimate cached value (a nodata pixel), so lookups go
    through :meth:`lookup` when the caller must tell a miss from a cached None.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = max(1, int(capacity))
        self._lock = Lock()
        self._items: "OrderedDict[K, V]" = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: K) -> bool:
        return key in self._items

    def lookup(self, key: K) -> Tuple[bool, Optional[V]]:
        """Return (found, value) and mark the key as recently used."""
        with self._lock:
            if key not in self._items:
                self._misses += 1
                return False, None
            self._items.move_to_end(key)
            self._hits += 1
            return True, self._items[key]

    def get(self, key: K) -> Optional[V]:
        return self.lookup(key)[1]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
            self._items[key] = value

            while len(self._items) > self._capacity:
                self._items.popitem(last=False)
                self._evictions += 1

    def evict_oldest(self) -> Optional[K]:
        """Drop the least recently used entry and return its key."""
        with self._lock:
            if not self._items:
                return None
            key, _ = self._items.popitem(last=False)
            self._evictions += 1
            return key

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "capacity": self._capacity,
            }

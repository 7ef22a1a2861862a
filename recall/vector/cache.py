"""
Bounded LRU memoization of computed vectors.

The cache is advisory: the message store is the system of record, and any
entry may be dropped at any time. A miss simply triggers a store read or a
recomputation.
"""

import threading
from collections import OrderedDict
from typing import Any, Dict, Hashable, Optional

import numpy as np

from ..util.logging import logger

DEFAULT_CAPACITY = 1000


class EmbeddingCache:
    """Thread-safe LRU cache of vectors keyed by message id or ``QueryKey``.

    Reads and writes both refresh recency. Stored vectors are frozen copies,
    so a reader can never observe a vector being modified.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Cache capacity must be >= 1: {capacity}")

        self.capacity = capacity
        self._entries: "OrderedDict[Hashable, np.ndarray]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: Hashable) -> Optional[np.ndarray]:
        """Return the cached vector, or None on a miss."""
        with self._lock:
            vector = self._entries.get(key)
            if vector is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return vector

    def put(self, key: Hashable, vector: np.ndarray) -> None:
        """Store a vector, evicting the least recently used entry when full."""
        frozen = np.array(vector, dtype=np.float64, copy=True)
        frozen.flags.writeable = False

        evicted = None
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = frozen
            if len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1

        if evicted is not None:
            logger.log_cache_event("evicted", {"key": str(evicted)})

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()
        logger.log_cache_event("cleared")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __contains__(self, key: Hashable) -> bool:
        # Membership does not refresh recency
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

from __future__ import annotations
from collections import OrderedDict
import threading
from typing import Any, Hashable, Iterator, List, Optional, Tuple

class BoundedCache:
    """
    Thread-safe map with a size cap and insertion-order eviction.

    Reads never reorder entries (this is not an LRU); re-setting a key counts
    as a fresh insertion, so it moves to the young end.
    """
    def __init__(self, capacity: int = 1024):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self.store: "OrderedDict[Hashable, Any]" = OrderedDict()
        self.lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self.lock:
            return self.store.get(key)

    def set(self, key: Hashable, value: Any) -> List[Tuple[Hashable, Any]]:
        """Insert and return whatever the cap pushed out (oldest first)."""
        evicted: List[Tuple[Hashable, Any]] = []
        with self.lock:
            self.store.pop(key, None)
            self.store[key] = value
            while len(self.store) > self.capacity:
                evicted.append(self.store.popitem(last=False))
        return evicted

    def pop(self, key: Hashable) -> Optional[Any]:
        with self.lock:
            return self.store.pop(key, None)

    def pop_if(self, key: Hashable, expected: Any) -> bool:
        """Remove `key` only while it still maps to `expected` (identity)."""
        with self.lock:
            if self.store.get(key) is expected:
                del self.store[key]
                return True
            return False

    def items(self) -> List[Tuple[Hashable, Any]]:
        with self.lock:
            return list(self.store.items())

    def clear(self) -> None:
        with self.lock:
            self.store.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self.store)

    def __contains__(self, key: Hashable) -> bool:
        with self.lock:
            return key in self.store

    def __iter__(self) -> Iterator[Hashable]:
        return iter([k for k, _ in self.items()])

from __future__ import annotations

import copy
from collections import OrderedDict
from collections.abc import Callable, Hashable
from threading import Lock
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LruCacheStore(Generic[K, V]):
    """Fixed-capacity key/value store with access-order LRU eviction.

    Both a `get` hit and a `put` mark the key as most recently used. Values are
    deep-copied in and out unless `copy_values=False`, so no caller ever shares a
    mutable reference with the store.
    """

    def __init__(
        self,
        *,
        max_entries: int,
        copy_values: bool = True,
        on_evict: Callable[[K, V], None] | None = None,
    ) -> None:
        if int(max_entries) <= 0:
            raise ValueError("max_entries must be > 0")
        self._max_entries = int(max_entries)
        self._copy_values = copy_values
        self._on_evict = on_evict
        self._lock = Lock()
        self._items: OrderedDict[K, V] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _copy(self, value: V) -> V:
        return copy.deepcopy(value) if self._copy_values else value

    def get(self, key: K) -> V | None:
        with self._lock:
            if key not in self._items:
                self._misses += 1
                return None
            self._items.move_to_end(key)
            self._hits += 1
            return self._copy(self._items[key])

    def put(self, key: K, value: V) -> None:
        payload = self._copy(value)
        evicted: list[tuple[K, V]] = []
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
            self._items[key] = payload

            while len(self._items) > self._max_entries:
                evicted.append(self._items.popitem(last=False))
                self._evictions += 1

        # Hooks run outside the lock so they may touch the cache again.
        if self._on_evict is not None:
            for old_key, old_value in evicted:
                self._on_evict(old_key, old_value)

    def pop(self, key: K) -> V | None:
        with self._lock:
            return self._items.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "max_entries": self._max_entries,
            }

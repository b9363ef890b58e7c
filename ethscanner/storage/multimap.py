"""Thread-safe one-to-many map: key -> ordered list of values."""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class MultiMap(Generic[K, V]):
    """
    Concurrent multimap.

    Every operation holds the map's lock, so an append is all-or-nothing
    for readers and concurrent puts to the same key never lose a value.
    `get` hands out a copy; callers can't mutate the stored list.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: dict[K, list[V]] = {}

    def get(self, key: K) -> tuple[list[V], bool]:
        """Return (values, found). values is [] when the key is absent."""
        with self._lock:
            values = self._data.get(key)
            if values is None:
                return [], False
            return list(values), True

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._data.setdefault(key, []).append(value)

    def put_all(self, key: K, values: Iterable[V]) -> None:
        """Append several values under one lock hold."""
        values = list(values)
        with self._lock:
            self._data.setdefault(key, []).extend(values)

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

"""Bounded key/value map with least-recently-used eviction."""

from collections import OrderedDict
from collections.abc import Hashable, Iterator
from typing import Any


class LruMap:
    """A fixed-capacity LRU map backed by an OrderedDict.

    ``get`` and ``set`` both move the key to the most-recently-used end.
    When ``set`` pushes the size over ``max_size`` the oldest entries are
    evicted. ``has``, ``len`` and iteration leave recency untouched.
    """

    def __init__(self, max_size: int):
        if max_size < 1:
            raise ValueError("LruMap max_size must be >= 1")
        self._max_size = max_size
        self._map: OrderedDict[Hashable, Any] = OrderedDict()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        return len(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._map

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._map))

    def has(self, key: Hashable) -> bool:
        return key in self._map

    def get(self, key: Hashable, default: Any = None) -> Any:
        if key not in self._map:
            return default
        self._map.move_to_end(key)
        return self._map[key]

    def set(self, key: Hashable, value: Any) -> "LruMap":
        if key in self._map:
            self._map.move_to_end(key)
        self._map[key] = value
        while len(self._map) > self._max_size:
            self._map.popitem(last=False)
        return self

    def delete(self, key: Hashable) -> bool:
        if key not in self._map:
            return False
        del self._map[key]
        return True

    def clear(self) -> None:
        self._map.clear()

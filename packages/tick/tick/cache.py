"""TickCache - memoization scoped to a single tick."""

from __future__ import annotations

from typing import Any, Callable, Hashable, TypeVar

T = TypeVar("T")


class TickCache:
    """Memoizes expensive lookups for the duration of one tick.

    A new cache is built by the clock for every tick, so entries never leak
    into the next one. Within a tick, callers that mutate what a cached scan
    observed can drop it with :meth:`invalidate`.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, key: Hashable, fn: Callable[[], T]) -> T:
        if key in self._entries:
            self.hits += 1
            return self._entries[key]
        self.misses += 1
        value = fn()
        self._entries[key] = value
        return value

    def invalidate(self, prefix: Hashable | None = None) -> None:
        """Drop every entry, or only tuple keys whose first item is *prefix*."""
        if prefix is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries
                    if isinstance(k, tuple) and k and k[0] == prefix]:
            del self._entries[key]

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

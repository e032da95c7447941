"""
Executable Cache

Bounded least-recently-used cache for compiled executables, keyed by
compilation signature.
"""

import logging
from collections import OrderedDict
from typing import Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar('V')


class ExecutableCache(Generic[V]):
    """
    LRU cache with a fixed capacity and hit/miss accounting.

    The oldest entry is evicted once ``max_size`` is exceeded.
    """

    def __init__(self, max_size: int = 64):
        self._entries: "OrderedDict[Hashable, V]" = OrderedDict()
        self._max_size = max_size
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def lookup(self, key: Hashable) -> Optional[V]:
        """Return the cached value for ``key`` or None, counting a hit or miss."""
        if key in self._entries:
            self._entries.move_to_end(key)
            self._hits += 1
            return self._entries[key]

        self._misses += 1
        return None

    def store(self, key: Hashable, value: V) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)

        while len(self._entries) > self._max_size:
            evicted_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(
                "Executable cache eviction: key=%s, size=%d/%d",
                evicted_key,
                len(self._entries),
                self._max_size
            )

    def clear(self) -> None:
        dropped = len(self._entries)
        self._entries.clear()
        logger.debug("Executable cache cleared: dropped=%d entries", dropped)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get_stats(self) -> dict:
        """
        Cache statistics.

        Returns:
            Dictionary with hits, misses, evictions, size, max_size and hit_rate
        """
        lookups = self._hits + self._misses
        return {
            'hits': self._hits,
            'misses': self._misses,
            'evictions': self._evictions,
            'size': len(self._entries),
            'max_size': self._max_size,
            'hit_rate': self._hits / lookups if lookups > 0 else 0.0,
        }

    def __repr__(self) -> str:
        stats = self.get_stats()
        return (
            f"ExecutableCache(size={stats['size']}/{stats['max_size']}, "
            f"hit_rate={stats['hit_rate']:.2%}, evictions={stats['evictions']})"
        )

"""In-process result cache for search operations.

A bounded, TTL-based map keyed by the normalized request. Eviction is strict
insertion order: when full, the oldest-inserted key goes first regardless of
how recently it was read. Entries past their TTL are reported as misses and
removed on access.

The cache lives for the process lifetime and is never persisted.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

import structlog

logger = structlog.get_logger("search_service.search_cache")

CacheKey = Tuple[str, str, str, int, Optional[float]]


@dataclass(frozen=True)
class CacheEntry:
    key: Hashable
    payload: Any
    inserted_at: float


def make_cache_key(
    search_type: str,
    normalized_query: str,
    filters_serialized: str,
    limit: int,
    threshold: Optional[float],
) -> CacheKey:
    """Build the cache key for one search request."""
    return (search_type, normalized_query, filters_serialized, int(limit), threshold)


class ResultCache:
    """Bounded FIFO cache with per-entry TTL.

    Parameters
    - max_entries: Capacity; inserting into a full cache evicts one entry
    - ttl_seconds: Age after which an entry is treated as absent
    - clock: Monotonic time source (injectable for tests)
    - name: Label used in logs and stats
    """

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "search_results",
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached payload, or ``None`` when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._clock() - entry.inserted_at >= self.ttl_seconds:
                del self._entries[key]
                logger.debug("Cache entry expired", cache=self.name)
                return None

            return entry.payload

    def put(self, key: Hashable, payload: Any) -> None:
        """Store ``payload`` under ``key``, evicting the oldest insert if full."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
                logger.debug("Cache entry evicted", cache=self.name, size=len(self._entries))

            self._entries[key] = CacheEntry(key=key, payload=payload, inserted_at=self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Search cache cleared", cache=self.name)

    def keys(self) -> list:
        """Keys in insertion order (oldest first)."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
        }


def create_search_cache(max_entries: int = 500, ttl_seconds: float = 300.0) -> ResultCache:
    """Create the search result cache."""
    return ResultCache(max_entries=max_entries, ttl_seconds=ttl_seconds)

"""Process-wide search counters and the shared search context.

``MetricsRecorder`` keeps the counters reported by ``GET /search/metrics``
and mirrors every update into the Prometheus collector from
``libs.common.metrics`` when one is attached. ``SearchContext`` bundles the
recorder with the result cache so both are constructed once per process and
injected into the search manager.
"""

import threading
from dataclasses import dataclass, field
from typing import Optional

import structlog

from libs.common.metrics import MetricsCollector
from ..models import SearchMetrics
from ..retrievers.cache_manager import ResultCache

logger = structlog.get_logger("search_service.runtime_metrics")

SEARCH_TYPES = ("vector", "keyword", "hybrid")


class MetricsRecorder:
    """Thread-safe search counters.

    ``total_searches`` and ``average_latency_ms`` only count top-level
    searches. Legs executed inside a hybrid search bump their per-type counter
    but leave the total and the average untouched.
    """

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self._collector = collector
        self._lock = threading.Lock()
        self._total = 0
        self._by_type = {search_type: 0 for search_type in SEARCH_TYPES}
        self._cache_hits = 0
        self._average_latency_ms = 0.0

    def record_search(self, search_type: str, latency_ms: float, internal: bool = False) -> None:
        if search_type not in self._by_type:
            raise ValueError(f"Unknown search type: {search_type}")

        with self._lock:
            self._by_type[search_type] += 1
            if not internal:
                self._total += 1
                n = self._total
                self._average_latency_ms = (
                    self._average_latency_ms * (n - 1) + latency_ms
                ) / n

        if self._collector is not None and not internal:
            self._collector.record_search(search_type, latency_ms / 1000.0)

    def record_cache_hit(self, cache_type: str = "search_results") -> None:
        with self._lock:
            self._cache_hits += 1
        if self._collector is not None:
            self._collector.record_cache_hit(cache_type)

    def record_cache_miss(self, cache_type: str = "search_results") -> None:
        if self._collector is not None:
            self._collector.record_cache_miss(cache_type)

    def record_failure(self, search_type: str) -> None:
        if self._collector is not None:
            self._collector.record_search_failure(search_type)

    def record_leg_failure(self, leg: str) -> None:
        if self._collector is not None:
            self._collector.record_leg_failure(leg)

    def record_vector_store_operation(self, operation: str) -> None:
        if self._collector is not None:
            self._collector.record_vector_store_operation(operation)

    def snapshot(self) -> SearchMetrics:
        """Return a consistent copy of the counters."""
        with self._lock:
            return SearchMetrics(
                total_searches=self._total,
                vector_searches=self._by_type["vector"],
                keyword_searches=self._by_type["keyword"],
                hybrid_searches=self._by_type["hybrid"],
                cache_hits=self._cache_hits,
                average_latency_ms=self._average_latency_ms,
            )

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._by_type = {search_type: 0 for search_type in SEARCH_TYPES}
            self._cache_hits = 0
            self._average_latency_ms = 0.0
        logger.info("Search metrics reset")


@dataclass
class SearchContext:
    """Shared mutable state of the search service."""

    cache: ResultCache = field(default_factory=ResultCache)
    metrics: MetricsRecorder = field(default_factory=MetricsRecorder)


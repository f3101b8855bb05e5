"""Prometheus metrics for the document search services.

Provides a thin convenience wrapper around ``prometheus_client`` so the search
service consistently records HTTP, search, cache, embedding and vector-store
metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (injectable for tests)
"""

from typing import Optional

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized Prometheus metrics for the search service.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'ds_search_requests_total',
            'Total search requests',
            ['query_type'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'ds_search_duration_seconds',
            'Search duration',
            ['query_type'],
            registry=self.registry
        )

        self.search_failures = Counter(
            'ds_search_failures_total',
            'Searches that surfaced an error to the caller',
            ['query_type'],
            registry=self.registry
        )

        self.retrieval_leg_failures = Counter(
            'ds_retrieval_leg_failures_total',
            'Hybrid retrieval legs that failed and were treated as empty',
            ['leg'],
            registry=self.registry
        )

        self.embedding_requests = Counter(
            'ds_embedding_requests_total',
            'Total embedding generation requests',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'ds_embedding_duration_seconds',
            'Embedding generation duration',
            ['model_name'],
            registry=self.registry
        )

        self.vector_store_operations = Counter(
            'ds_vector_store_operations_total',
            'Total vector similarity queries by execution path',
            ['operation'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'ds_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'ds_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_search(self, query_type: str, duration: float) -> None:
        """Record a completed search (duration in seconds)."""
        self.search_requests.labels(query_type=query_type).inc()
        self.search_duration.labels(query_type=query_type).observe(duration)

    def record_search_failure(self, query_type: str) -> None:
        self.search_failures.labels(query_type=query_type).inc()

    def record_leg_failure(self, leg: str) -> None:
        self.retrieval_leg_failures.labels(leg=leg).inc()

    def record_embedding(self, model_name: str, status: str, duration: float) -> None:
        """Record embedding generation metrics."""
        self.embedding_requests.labels(model_name=model_name, status=status).inc()
        self.embedding_duration.labels(model_name=model_name).observe(duration)

    def record_vector_store_operation(self, operation: str) -> None:
        """Record which similarity path served a query (``native``/``fallback``)."""
        self.vector_store_operations.labels(operation=operation).inc()

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector

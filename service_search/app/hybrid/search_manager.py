"""Search manager for hybrid semantic and lexical search.

Combines vector similarity (semantic) with keyword relevance (lexical) and
merges results with a boosted weighted sum. Either signal may be missing: a
failed leg is treated as empty, and only when both legs fail does the caller
see an error.

Request flow
- Normalize the query once and derive the cache key
- Serve from the result cache when possible, before any I/O
- Run the vector and keyword legs concurrently
- Fuse, cache, record metrics, then schedule a detached history write
"""

import asyncio
import time
from typing import Any, Awaitable, Dict, List, Optional, Set, Tuple, Union

import numpy as np
import structlog

from libs.common.config import SearchConfig
from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector, get_metrics_collector
from libs.vector_store.base import VectorStore
from libs.vector_store.factory import create_vector_store_from_env
from ..encoders.embedding_client import EmbeddingProvider, create_embedding_provider
from ..exceptions import ProviderError, SearchServiceError
from ..history.history_sink import HistorySink, InMemoryHistorySink, PgHistorySink
from ..intelligence.query_normalizer import QueryVariants, normalize
from ..models import (
    HybridResult,
    KeywordResult,
    SearchFilters,
    SearchHistoryRecord,
    SearchMetrics,
    VectorResult,
)
from ..ranking.fusion import create_fusion_algorithm
from ..repositories.document_repository import (
    DocumentRepository,
    InMemoryDocumentRepository,
    PgDocumentRepository,
)
from ..retrievers.cache_manager import ResultCache, create_search_cache, make_cache_key
from ..retrievers.keyword_retriever import KeywordRetriever
from ..retrievers.vector_retriever import VectorRetriever
from ..runtime.metrics import MetricsRecorder, SearchContext

logger = structlog.get_logger("search_service.search_manager")

FiltersArg = Union[SearchFilters, Dict[str, Any], None]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class SearchManager:
    """Manages vector, keyword and hybrid search operations.

    Responsibilities
    - Clamp limits and apply default thresholds
    - Own the retrievers and the fusion algorithm
    - Read and populate the shared result cache
    - Record metrics and best-effort search history
    """

    def __init__(
        self,
        config: SearchConfig,
        repository: DocumentRepository,
        vector_store: VectorStore,
        embedding_provider: EmbeddingProvider,
        history_sink: Optional[HistorySink] = None,
        context: Optional[SearchContext] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        """Construct a search manager.

        Parameters
        - config: ``SearchConfig`` with ranking weights, limits and timeouts
        - repository: Candidate source for both retrieval legs
        - vector_store: Similarity backend
        - embedding_provider: Query encoder
        - history_sink: Optional destination for search history rows
        - context: Shared cache and counters; built from ``config`` when omitted
        """
        self.config = config
        self.repository = repository
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self.history_sink = history_sink
        self.context = context or SearchContext(
            cache=create_search_cache(
                max_entries=config.ds_search_cache_max_entries,
                ttl_seconds=config.ds_search_cache_ttl_seconds,
            ),
            metrics=MetricsRecorder(metrics_collector),
        )

        self.vector_retriever = VectorRetriever(
            repository=repository,
            vector_store=vector_store,
            embedding_provider=embedding_provider,
            metrics=self.context.metrics,
            embedding_timeout=config.ds_embedding_timeout_seconds,
            similarity_timeout=config.ds_search_similarity_timeout_seconds,
        )
        self.keyword_retriever = KeywordRetriever(
            repository=repository,
            field_weights=config.ds_search_keyword_weights,
        )
        self.fusion_algorithm = create_fusion_algorithm(
            "boosted_weighted",
            vector_weight=config.ds_search_vector_weight,
            boost_tiers=config.ds_search_boost_tiers,
        )

        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def cache(self) -> ResultCache:
        return self.context.cache

    @property
    def metrics(self) -> MetricsRecorder:
        return self.context.metrics

    async def initialize(self):
        """Probe the similarity backend so the first request does not pay for it."""
        try:
            native = await self.vector_store.supports_native_similarity()
            logger.info("Search manager initialized successfully", native_similarity=native)
        except Exception as e:
            logger.warning("Similarity capability probe failed", error=str(e))

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.config.ds_search_default_limit
        return max(1, min(int(limit), self.config.ds_search_max_limit))

    @staticmethod
    def _coerce_filters(filters: FiltersArg) -> SearchFilters:
        if isinstance(filters, SearchFilters):
            return filters
        return SearchFilters.from_dict(filters)

    @staticmethod
    def _clamp_threshold(threshold: float) -> float:
        return min(1.0, max(0.0, float(threshold)))

    def _cache_get(self, key: Tuple) -> Optional[Tuple]:
        try:
            cached = self.cache.get(key)
        except Exception as e:
            logger.warning("Result cache read failed", error=str(e))
            return None

        if cached is None:
            self.metrics.record_cache_miss()
            return None
        self.metrics.record_cache_hit()
        return cached

    def _cache_put(self, key: Tuple, results: List[Any]) -> None:
        try:
            self.cache.put(key, tuple(results))
        except Exception as e:
            logger.warning("Result cache write failed", error=str(e))

    async def vector_search(
        self,
        query: str,
        filters: FiltersArg = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        user_id: Optional[str] = None,
        record_history: bool = True,
    ) -> List[VectorResult]:
        """Rank documents by embedding similarity alone.

        An unavailable embedding provider yields ``[]``; a failing repository
        or vector store raises ``SearchServiceError``.
        """
        start = time.perf_counter()
        search_filters = self._coerce_filters(filters)
        limit = self.clamp_limit(limit)
        threshold = self._clamp_threshold(
            self.config.ds_search_vector_threshold if threshold is None else threshold
        )
        variants = normalize(query)

        key = make_cache_key("vector", variants.collapsed.lower(), search_filters.serialize(), limit, threshold)
        cached = self._cache_get(key)
        if cached is not None:
            self.metrics.record_search("vector", _elapsed_ms(start))
            return list(cached)

        degraded = False
        try:
            results, embedding = await self.vector_retriever.search_with_embedding(
                variants, search_filters, limit, threshold
            )
        except ProviderError as e:
            logger.warning("Vector search returned no results, embedding unavailable", error=str(e))
            results, embedding, degraded = [], None, True
        except Exception as e:
            self.metrics.record_failure("vector")
            logger.error("Vector search failed", query=variants.trimmed[:50], error=str(e))
            raise SearchServiceError("Vector search failed") from e

        if not degraded:
            self._cache_put(key, results)
        self.metrics.record_search("vector", _elapsed_ms(start))

        if record_history:
            self._schedule_history(
                user_id=user_id,
                variants=variants,
                embedding=embedding,
                method="vector",
                score=results[0].similarity_score if results else None,
                result_count=len(results),
                filters=search_filters,
            )
        return results

    async def keyword_search(
        self,
        query: str,
        filters: FiltersArg = None,
        limit: Optional[int] = None,
    ) -> List[KeywordResult]:
        """Rank documents by keyword relevance alone."""
        start = time.perf_counter()
        search_filters = self._coerce_filters(filters)
        limit = self.clamp_limit(limit)
        variants = normalize(query)

        key = make_cache_key("keyword", variants.collapsed.lower(), search_filters.serialize(), limit, None)
        cached = self._cache_get(key)
        if cached is not None:
            self.metrics.record_search("keyword", _elapsed_ms(start))
            return list(cached)

        try:
            results = await self.keyword_retriever.search(variants, search_filters, limit)
        except Exception as e:
            self.metrics.record_failure("keyword")
            logger.error("Keyword search failed", query=variants.trimmed[:50], error=str(e))
            raise SearchServiceError("Keyword search failed") from e

        self._cache_put(key, results)
        self.metrics.record_search("keyword", _elapsed_ms(start))
        return results

    async def hybrid_search(
        self,
        query: str,
        filters: FiltersArg = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        user_id: Optional[str] = None,
        record_history: bool = True,
    ) -> List[HybridResult]:
        """Fuse the vector and keyword legs into one ranking.

        ``threshold`` bounds the vector leg's similarity. Each leg fetches
        twice the requested limit before fusion.
        """
        start = time.perf_counter()
        search_filters = self._coerce_filters(filters)
        limit = self.clamp_limit(limit)
        threshold = self._clamp_threshold(
            self.config.ds_search_hybrid_threshold if threshold is None else threshold
        )
        variants = normalize(query)

        key = make_cache_key("hybrid", variants.collapsed.lower(), search_filters.serialize(), limit, threshold)
        cached = self._cache_get(key)
        if cached is not None:
            self.metrics.record_search("hybrid", _elapsed_ms(start))
            return list(cached)

        leg_limit = limit * 2
        vector_outcome, keyword_outcome = await asyncio.gather(
            self._timed_leg(
                "vector",
                self.vector_retriever.search_with_embedding(variants, search_filters, leg_limit, threshold),
            ),
            self._timed_leg(
                "keyword",
                self.keyword_retriever.search(variants, search_filters, leg_limit),
            ),
            return_exceptions=True,
        )

        vector_failed = isinstance(vector_outcome, Exception)
        keyword_failed = isinstance(keyword_outcome, Exception)
        for outcome in (vector_outcome, keyword_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        if vector_failed and keyword_failed:
            self.metrics.record_failure("hybrid")
            logger.error(
                "Hybrid search failed, both legs raised",
                vector_error=str(vector_outcome),
                keyword_error=str(keyword_outcome),
            )
            raise SearchServiceError("Hybrid search failed") from keyword_outcome

        vector_results: List[VectorResult] = []
        embedding: Optional[np.ndarray] = None
        if vector_failed:
            self.metrics.record_leg_failure("vector")
            logger.warning("Vector leg failed, continuing with keyword results", error=str(vector_outcome))
        else:
            vector_results, embedding = vector_outcome

        keyword_results: List[KeywordResult] = []
        if keyword_failed:
            self.metrics.record_leg_failure("keyword")
            logger.warning("Keyword leg failed, continuing with vector results", error=str(keyword_outcome))
        else:
            keyword_results = keyword_outcome

        results = self.fusion_algorithm.fuse_results(vector_results, keyword_results, limit)

        if not (vector_failed or keyword_failed):
            self._cache_put(key, results)
        latency_ms = _elapsed_ms(start)
        self.metrics.record_search("hybrid", latency_ms)

        log_performance(
            "hybrid_search",
            latency_ms,
            vector_count=len(vector_results),
            keyword_count=len(keyword_results),
            results_count=len(results),
        )

        if record_history:
            self._schedule_history(
                user_id=user_id,
                variants=variants,
                embedding=embedding,
                method="hybrid",
                score=results[0].combined_score if results else 0.0,
                result_count=len(results),
                filters=search_filters,
            )
        return results

    async def _timed_leg(self, search_type: str, leg: Awaitable[Any]) -> Any:
        """Await one hybrid leg and count it as an internal search."""
        start = time.perf_counter()
        try:
            return await leg
        finally:
            self.metrics.record_search(search_type, _elapsed_ms(start), internal=True)

    async def search(
        self,
        query: str,
        filters: FiltersArg = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        search_type: str = "hybrid",
        user_id: Optional[str] = None,
    ) -> List[HybridResult]:
        """Single entry point returning ranked ``(document_id, score)`` results."""
        if search_type == "hybrid":
            return await self.hybrid_search(query, filters, limit, threshold, user_id)

        if search_type == "vector":
            vector_results = await self.vector_search(query, filters, limit, threshold, user_id)
            return [
                HybridResult(
                    document_id=r.document_id,
                    combined_score=r.similarity_score,
                    vector_score=r.similarity_score,
                )
                for r in vector_results
            ]

        if search_type == "keyword":
            keyword_results = await self.keyword_search(query, filters, limit)
            return [
                HybridResult(
                    document_id=r.document_id,
                    combined_score=r.text_score,
                    text_score=r.text_score,
                )
                for r in keyword_results
            ]

        raise SearchServiceError(f"Unknown search type: {search_type}")

    def _schedule_history(
        self,
        user_id: Optional[str],
        variants: QueryVariants,
        embedding: Optional[np.ndarray],
        method: str,
        score: Optional[float],
        result_count: int,
        filters: SearchFilters,
    ) -> None:
        if not user_id or self.history_sink is None or variants.is_empty:
            return

        entry = SearchHistoryRecord(
            user_id=user_id,
            query=variants.trimmed,
            embedding=[float(x) for x in embedding] if embedding is not None else None,
            method=method,
            score=score,
            result_count=result_count,
            filters=filters.to_dict(),
        )
        task = asyncio.get_running_loop().create_task(self._write_history(entry))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _write_history(self, entry: SearchHistoryRecord) -> None:
        try:
            await self.history_sink.record(entry)
        except Exception as e:
            logger.warning("Failed to save search history", method=entry.method, error=str(e))

    async def drain_background_tasks(self) -> None:
        """Wait for pending history writes."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def get_user_history(self, user_id: str, limit: int = 50) -> List[SearchHistoryRecord]:
        if self.history_sink is None:
            return []
        try:
            return await self.history_sink.get_user_history(user_id, limit)
        except Exception as e:
            logger.error("Failed to load search history", error=str(e))
            raise SearchServiceError("Failed to load search history") from e

    async def get_popular_queries(self, limit: int = 10) -> List[Dict[str, Any]]:
        if self.history_sink is None:
            return []
        try:
            return await self.history_sink.get_popular_queries(limit)
        except Exception as e:
            logger.error("Failed to load popular searches", error=str(e))
            raise SearchServiceError("Failed to load popular searches") from e

    def get_metrics(self) -> SearchMetrics:
        return self.metrics.snapshot()

    def clear_cache(self) -> None:
        self.cache.clear()

    async def health_check(self) -> bool:
        """Check if the search manager is healthy."""
        try:
            repository_healthy = await self.repository.health_check()
            vector_store_healthy = await self.vector_store.health_check()
            return repository_healthy and vector_store_healthy
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def cleanup(self):
        """Cleanup resources."""
        await self.drain_background_tasks()
        for name, resource in (
            ("embedding_provider", self.embedding_provider),
            ("vector_store", self.vector_store),
            ("repository", self.repository),
            ("history_sink", self.history_sink),
        ):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.error("Failed to close resource", resource=name, error=str(e))
        logger.info("Search manager cleanup completed")


def create_search_manager(
    config: SearchConfig,
    metrics_collector: Optional[MetricsCollector] = None,
) -> SearchManager:
    """Wire a ``SearchManager`` from configuration.

    ``ds_vector_backend=memory`` selects in-process stores for every
    collaborator; ``pgvector`` uses PostgreSQL for documents, embeddings and
    history.
    """
    collector = metrics_collector or get_metrics_collector("search")
    backend = config.ds_vector_backend.lower()

    vector_store = create_vector_store_from_env({
        "DS_VECTOR_BACKEND": backend,
        "DS_DB_DSN": config.ds_db_dsn,
        "DS_VECTOR_POOL_SIZE": str(config.ds_vector_pool_size),
        "DS_VECTOR_MAX_QUERIES": str(config.ds_vector_max_queries),
        "DS_VECTOR_COMMAND_TIMEOUT": str(config.ds_vector_command_timeout),
        "DS_VECTOR_DIMENSION": str(config.ds_vector_dimension),
    })

    if backend == "memory":
        repository: DocumentRepository = InMemoryDocumentRepository()
        history_sink: HistorySink = InMemoryHistorySink()
    else:
        repository = PgDocumentRepository(dsn=config.ds_db_dsn, pool_size=config.ds_vector_pool_size)
        history_sink = PgHistorySink(dsn=config.ds_db_dsn)

    context = SearchContext(
        cache=create_search_cache(
            max_entries=config.ds_search_cache_max_entries,
            ttl_seconds=config.ds_search_cache_ttl_seconds,
        ),
        metrics=MetricsRecorder(collector),
    )

    return SearchManager(
        config=config,
        repository=repository,
        vector_store=vector_store,
        embedding_provider=create_embedding_provider(config, metrics_collector=collector),
        history_sink=history_sink,
        context=context,
    )

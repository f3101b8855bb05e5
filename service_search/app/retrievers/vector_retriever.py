"""Semantic retrieval by embedding similarity.

The query is embedded once, the filtered candidate set is fetched from the
document repository, and similarity is evaluated by the vector store. When
the store reports that it cannot evaluate similarity natively, raw vectors
are fetched and cosine similarity is computed in process; both paths yield
the same ranking within floating-point tolerance.
"""

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from libs.vector_store.base import VectorStore, VectorStoreQueryError, cosine_similarity
from ..encoders.embedding_client import EmbeddingProvider
from ..exceptions import ProviderError
from ..intelligence.query_normalizer import QueryVariants
from ..models import DocumentEmbedding, SearchFilters, VectorResult
from ..repositories.document_repository import DocumentRepository
from ..runtime.metrics import MetricsRecorder

logger = structlog.get_logger("search_service.vector_retriever")


def rank_vector_results(
    rows: Sequence[Tuple[str, float]],
    threshold: float,
    limit: int,
) -> List[VectorResult]:
    """Validate rows, keep the best score per id, filter, sort and truncate.

    The threshold is compared with the raw similarity, before ``from_row``
    clamps negative cosine values to 0.
    """
    best: Dict[str, VectorResult] = {}
    for document_id, similarity in rows:
        try:
            result = VectorResult.from_row(document_id, similarity)
        except (TypeError, ValueError) as e:
            logger.warning("Discarding invalid similarity row", error=str(e))
            continue
        if float(similarity) < threshold:
            continue
        current = best.get(result.document_id)
        if current is None or result.similarity_score > current.similarity_score:
            best[result.document_id] = result

    results = list(best.values())
    results.sort(key=lambda r: (-r.similarity_score, r.document_id))
    return results[:limit]


def score_embeddings(
    query_vector: np.ndarray,
    embeddings: Sequence[DocumentEmbedding],
) -> List[Tuple[str, float]]:
    """Cosine similarity of ``query_vector`` against each stored embedding.

    Embeddings that are empty, zero-norm, of the wrong dimension or that
    produce a non-finite score are skipped.
    """
    rows = []
    for embedding in embeddings:
        if embedding.dimension != query_vector.shape[0]:
            continue
        similarity = cosine_similarity(query_vector, embedding.vector)
        if similarity is not None:
            rows.append((embedding.document_id, similarity))
    return rows


class VectorRetriever:
    """Ranks filtered candidates by similarity to the query embedding."""

    def __init__(
        self,
        repository: DocumentRepository,
        vector_store: VectorStore,
        embedding_provider: EmbeddingProvider,
        metrics: Optional[MetricsRecorder] = None,
        embedding_timeout: float = 10.0,
        similarity_timeout: float = 15.0,
    ):
        self.repository = repository
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self.metrics = metrics
        self.embedding_timeout = embedding_timeout
        self.similarity_timeout = similarity_timeout

    async def embed_query(self, variants: QueryVariants) -> np.ndarray:
        """Embed ``variants.embedding_text``, raising ``ProviderError`` on failure or timeout."""
        try:
            vector = await asyncio.wait_for(
                self.embedding_provider.generate_embedding(variants.embedding_text),
                timeout=self.embedding_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Embedding generation timed out", timeout_seconds=self.embedding_timeout)
            raise ProviderError("Embedding generation timed out") from e
        except ProviderError:
            raise
        except Exception as e:
            logger.error("Embedding generation failed", error=str(e))
            raise ProviderError(f"Embedding generation failed: {e}") from e

        vector = np.asarray(vector, dtype=np.float64)
        if vector.ndim != 1 or vector.size == 0:
            raise ProviderError("Embedding provider returned an empty vector")
        return vector

    async def search(
        self,
        variants: QueryVariants,
        filters: SearchFilters,
        limit: int,
        threshold: float,
    ) -> List[VectorResult]:
        results, _ = await self.search_with_embedding(variants, filters, limit, threshold)
        return results

    async def search_with_embedding(
        self,
        variants: QueryVariants,
        filters: SearchFilters,
        limit: int,
        threshold: float,
    ) -> Tuple[List[VectorResult], Optional[np.ndarray]]:
        """Run the search and also return the query embedding (``None`` when not computed)."""
        if variants.is_empty or limit < 1:
            return [], None

        query_vector = await self.embed_query(variants)

        document_ids = await self.repository.get_candidate_ids(filters)
        if not document_ids:
            logger.debug("No vector candidates for filters")
            return [], query_vector

        native = await self._query_similarity(query_vector, document_ids, threshold, limit)
        if native.supported:
            self._record_operation("native")
            rows = native.rows
        else:
            self._record_operation("fallback")
            rows = await self._fallback_similarity(query_vector, document_ids)

        results = rank_vector_results(rows, threshold, limit)
        logger.info(
            "Vector search completed",
            candidates=len(document_ids),
            results_count=len(results),
            native=native.supported,
        )
        return results, query_vector

    async def _query_similarity(self, query_vector, document_ids, threshold, limit):
        try:
            return await asyncio.wait_for(
                self.vector_store.search_similar(
                    query_vector=query_vector,
                    document_ids=document_ids,
                    similarity_threshold=threshold,
                    limit=limit,
                ),
                timeout=self.similarity_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Similarity query timed out", timeout_seconds=self.similarity_timeout)
            raise VectorStoreQueryError("Similarity query timed out") from e

    async def _fallback_similarity(
        self,
        query_vector: np.ndarray,
        document_ids: Sequence[str],
    ) -> List[Tuple[str, float]]:
        raw = await asyncio.wait_for(
            self.vector_store.get_embeddings(document_ids),
            timeout=self.similarity_timeout,
        )
        embeddings = [
            DocumentEmbedding(document_id=doc_id, vector=vector, dimension=int(vector.shape[0]))
            for doc_id, vector in raw.items()
            if vector is not None and vector.ndim == 1 and vector.size > 0
        ]
        return score_embeddings(query_vector, embeddings)

    def _record_operation(self, operation: str) -> None:
        if self.metrics:
            self.metrics.record_vector_store_operation(operation)

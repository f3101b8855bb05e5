"""In-process embedding store.

Keeps document vectors in a dict and evaluates cosine similarity with numpy.
Used for local development and tests. ``native_similarity=False`` makes it
behave like a database without the vector extension, so callers exercise
their fallback path against identical data.
"""

import threading
from typing import Dict, Iterable, Optional, Sequence

import numpy as np
import structlog

from .base import UNSUPPORTED, SimilarityQueryResult, VectorStore, cosine_similarity

logger = structlog.get_logger("vector_store.memory")


class InMemoryVectorStore(VectorStore):
    """Dictionary-backed vector store."""

    def __init__(
        self,
        vector_dimension: Optional[int] = None,
        native_similarity: bool = True,
    ):
        self.vector_dimension = vector_dimension
        self.native_similarity = native_similarity
        self._vectors: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def upsert(self, document_id: str, vector: Iterable[float]) -> None:
        """Store or replace a document vector (ingestion side, tests only)."""
        array = np.asarray(list(vector), dtype=np.float64)
        if self.vector_dimension is not None and array.size and array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, got {array.shape[0]}"
            )
        with self._lock:
            self._vectors[document_id] = array

    def remove(self, document_id: str) -> None:
        with self._lock:
            self._vectors.pop(document_id, None)

    async def supports_native_similarity(self) -> bool:
        return self.native_similarity

    async def search_similar(
        self,
        query_vector: np.ndarray,
        document_ids: Sequence[str],
        similarity_threshold: float = 0.0,
        limit: int = 10,
    ) -> SimilarityQueryResult:
        if not self.native_similarity:
            return UNSUPPORTED

        with self._lock:
            candidates = [(doc_id, self._vectors[doc_id]) for doc_id in set(document_ids) if doc_id in self._vectors]

        rows = []
        for doc_id, vector in candidates:
            similarity = cosine_similarity(query_vector, vector)
            if similarity is not None and similarity >= similarity_threshold:
                rows.append((doc_id, similarity))

        rows.sort(key=lambda row: (-row[1], row[0]))
        return SimilarityQueryResult.ok(rows[:limit])

    async def get_embeddings(self, document_ids: Sequence[str]) -> Dict[str, np.ndarray]:
        with self._lock:
            return {doc_id: self._vectors[doc_id] for doc_id in document_ids if doc_id in self._vectors}

    async def health_check(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._vectors)

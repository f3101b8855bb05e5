"""Base vector store interface.

Defines the contract the search service depends on, independent of the
backing implementation (PgVector, in-memory).

Similarity queries return a ``SimilarityQueryResult`` rather than raising when
the backend lacks a native similarity operator, so callers branch on
``result.supported`` explicitly and run an in-process fallback.

All I/O methods are asynchronous.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class SimilarityQueryResult:
    """Outcome of a native similarity query.

    ``rows`` holds ``(document_id, similarity)`` pairs, sorted by descending
    similarity, when ``supported`` is true. When the backend cannot evaluate
    similarity natively, ``supported`` is false and ``rows`` is empty.
    """

    supported: bool
    rows: List[Tuple[str, float]] = field(default_factory=list)

    @classmethod
    def ok(cls, rows: List[Tuple[str, float]]) -> "SimilarityQueryResult":
        return cls(supported=True, rows=rows)


UNSUPPORTED = SimilarityQueryResult(supported=False)


class VectorStore(ABC):
    """Abstract base class for document embedding stores.

    The store is read-only from the search service's point of view; writes
    belong to the ingestion pipeline.
    """

    @abstractmethod
    async def supports_native_similarity(self) -> bool:
        """Probe whether the backend can evaluate similarity natively."""

    @abstractmethod
    async def search_similar(
        self,
        query_vector: np.ndarray,
        document_ids: Sequence[str],
        similarity_threshold: float = 0.0,
        limit: int = 10,
    ) -> SimilarityQueryResult:
        """Nearest-neighbour search restricted to ``document_ids``.

        Similarity is ``1 - cosine_distance``; threshold and limit are applied
        by the backend.
        """

    @abstractmethod
    async def get_embeddings(self, document_ids: Sequence[str]) -> Dict[str, np.ndarray]:
        """Bulk fetch raw vectors by document id (fallback path).

        Documents without a stored embedding are absent from the result.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""

    async def close(self) -> None:
        """Release backend resources."""


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> Optional[float]:
    """Cosine similarity of two 1-D vectors.

    Returns ``None`` when the similarity is undefined: empty or mismatched
    vectors, a zero-norm operand, or a non-finite result.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.ndim != 1 or b.ndim != 1 or a.size == 0 or a.shape != b.shape:
        return None

    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0 or not np.isfinite(norm):
        return None

    similarity = float(np.dot(a, b) / norm)
    if not np.isfinite(similarity):
        return None
    return similarity


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class VectorStoreConnectionError(VectorStoreError):
    """Connection error to vector store."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Query error in vector store."""
    pass

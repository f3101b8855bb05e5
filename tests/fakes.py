"""In-process collaborators shared by the search tests."""

import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from libs.common.config import SearchConfig
from libs.vector_store.memory import InMemoryVectorStore
from service_search.app.encoders.embedding_client import EmbeddingProvider
from service_search.app.exceptions import DocumentRepositoryError, HistorySinkError, ProviderError
from service_search.app.history.history_sink import InMemoryHistorySink
from service_search.app.hybrid.search_manager import SearchManager
from service_search.app.models import CandidateDocument, DocumentRecord, SearchFilters, SearchHistoryRecord
from service_search.app.repositories.document_repository import InMemoryDocumentRepository

DIM = 8


def query_vector(dim: int = DIM) -> np.ndarray:
    vector = np.zeros(dim)
    vector[0] = 1.0
    return vector


def vector_with_similarity(similarity: float, dim: int = DIM) -> List[float]:
    """Unit vector whose cosine similarity with ``query_vector()`` is ``similarity``."""
    vector = [0.0] * dim
    vector[0] = similarity
    vector[1] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


class StaticEmbeddingProvider(EmbeddingProvider):
    """Returns the same vector for every text and records each call."""

    def __init__(self, vector: Optional[np.ndarray] = None, error: Optional[Exception] = None):
        self.vector = query_vector() if vector is None else vector
        self.dimension = len(self.vector)
        self.error = error
        self.calls: List[str] = []

    async def generate_embedding(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if not text.strip():
            raise ProviderError("Text cannot be empty")
        return np.array(self.vector, dtype=np.float64)


class FailingRepository(InMemoryDocumentRepository):
    """Repository whose candidate queries fail on demand."""

    def __init__(self, *args, fail_ids: bool = False, fail_keyword: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_ids = fail_ids
        self.fail_keyword = fail_keyword

    async def get_candidate_ids(self, filters: SearchFilters) -> List[str]:
        if self.fail_ids:
            raise DocumentRepositoryError("database unavailable")
        return await super().get_candidate_ids(filters)

    async def find_keyword_candidates(
        self,
        filters: SearchFilters,
        terms: Sequence[str],
        limit: int,
    ) -> List[CandidateDocument]:
        if self.fail_keyword:
            raise DocumentRepositoryError("database unavailable")
        return await super().find_keyword_candidates(filters, terms, limit)


class FailingHistorySink(InMemoryHistorySink):

    async def record(self, entry: SearchHistoryRecord) -> None:
        raise HistorySinkError("history table missing")


def make_config(**overrides) -> SearchConfig:
    values = {"ds_vector_dimension": DIM, "ds_vector_backend": "memory"}
    values.update(overrides)
    return SearchConfig(_env_file=None, **values)


def build_manager(
    documents: Sequence[DocumentRecord],
    embeddings: Dict[str, List[float]],
    provider: Optional[EmbeddingProvider] = None,
    native_similarity: bool = True,
    repository: Optional[InMemoryDocumentRepository] = None,
    history_sink=None,
    config: Optional[SearchConfig] = None,
) -> SearchManager:
    store = InMemoryVectorStore(vector_dimension=DIM, native_similarity=native_similarity)
    for document_id, vector in embeddings.items():
        store.upsert(document_id, vector)

    if repository is None:
        repository = InMemoryDocumentRepository(documents)
    else:
        for document in documents:
            repository.add_document(document)

    return SearchManager(
        config=config or make_config(),
        repository=repository,
        vector_store=store,
        embedding_provider=provider or StaticEmbeddingProvider(),
        history_sink=history_sink if history_sink is not None else InMemoryHistorySink(),
    )

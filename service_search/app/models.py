"""Data model shared by the search components."""

import json
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


@dataclass(frozen=True)
class SearchFilters:
    """Hard filters applied before any scoring.

    ``category_id`` matches the category and all of its active descendants;
    ``tags`` matches documents sharing at least one tag.
    """

    category_id: Optional[str] = None
    tags: Optional[List[str]] = None
    language: Optional[str] = None
    is_public: Optional[bool] = None
    is_approved: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.tags is not None:
            data["tags"] = sorted(set(self.tags))
        return data

    def serialize(self) -> str:
        """Canonical JSON used in cache keys."""
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchFilters":
        if not data:
            return cls()
        return cls(
            category_id=data.get("category_id"),
            tags=list(data["tags"]) if data.get("tags") else None,
            language=data.get("language"),
            is_public=data.get("is_public"),
            is_approved=data.get("is_approved", True),
        )


@dataclass(frozen=True)
class DocumentEmbedding:
    """A stored document vector; owned by the ingestion pipeline."""

    document_id: str
    vector: np.ndarray
    dimension: int


@dataclass(frozen=True)
class VectorResult:
    document_id: str
    similarity_score: float

    @classmethod
    def from_row(cls, document_id: Any, similarity: Any) -> "VectorResult":
        """Validate a backend row at the boundary.

        Raises ``ValueError`` for a missing id or a non-finite score; clamps
        the score into ``[0, 1]``.
        """
        if document_id is None or str(document_id) == "":
            raise ValueError("similarity row without document id")
        score = float(similarity)
        if not math.isfinite(score):
            raise ValueError(f"non-finite similarity for {document_id}")
        return cls(document_id=str(document_id), similarity_score=_clamp_unit(score))


@dataclass(frozen=True)
class KeywordResult:
    document_id: str
    text_score: float


@dataclass(frozen=True)
class HybridResult:
    document_id: str
    combined_score: float
    vector_score: Optional[float] = None
    text_score: Optional[float] = None

    @property
    def score(self) -> float:
        return self.combined_score


@dataclass(frozen=True)
class CandidateDocument:
    """The document fields the keyword scorer reads."""

    id: str
    title: str
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    key_points: List[str] = field(default_factory=list)
    suggested_tags: List[str] = field(default_factory=list)
    updated_at: Optional[datetime] = None


@dataclass
class CategoryRecord:
    id: str
    parent_id: Optional[str] = None
    is_active: bool = True


@dataclass
class DocumentRecord:
    """A document row as held by the in-memory repository."""

    id: str
    title: str
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    language: Optional[str] = None
    category_id: Optional[str] = None
    is_public: bool = True
    is_approved: bool = True
    moderation_status: str = "APPROVED"
    summary: Optional[str] = None
    key_points: List[str] = field(default_factory=list)
    suggested_tags: List[str] = field(default_factory=list)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_candidate(self) -> CandidateDocument:
        return CandidateDocument(
            id=self.id,
            title=self.title,
            description=self.description,
            tags=list(self.tags),
            summary=self.summary,
            key_points=list(self.key_points),
            suggested_tags=list(self.suggested_tags),
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class SearchHistoryRecord:
    user_id: str
    query: str
    embedding: Optional[List[float]]
    method: str
    score: Optional[float]
    result_count: int
    filters: Dict[str, Any]
    searched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class SearchMetrics:
    """Point-in-time copy of the process-wide search counters."""

    total_searches: int = 0
    vector_searches: int = 0
    keyword_searches: int = 0
    hybrid_searches: int = 0
    cache_hits: int = 0
    average_latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

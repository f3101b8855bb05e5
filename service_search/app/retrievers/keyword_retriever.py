"""Lexical retrieval by substring and token coverage.

Each candidate field scores the best of:

- the lowercase trimmed query as a substring
- the lowercase normalized query as a substring
- either condensed query (letters and digits only) inside the condensed field
- token coverage: the fraction of expanded query tokens found in the field

Field scores are combined with fixed weights into a ``text_score`` in
``(0, 1]``. There is no stemming and no full-text index; this is a relevance
heuristic, not an exact-match guarantee.
"""

from typing import Dict, List, Mapping, Optional

import structlog

from libs.common.config import DEFAULT_KEYWORD_WEIGHTS
from ..intelligence.query_normalizer import QueryVariants, condense
from ..models import CandidateDocument, KeywordResult, SearchFilters
from ..repositories.document_repository import DocumentRepository

logger = structlog.get_logger("search_service.keyword_retriever")

CANDIDATE_MULTIPLIER = 3
FALLBACK_MULTIPLIER = 5
FALLBACK_MAX = 100


def token_coverage(field_lower: str, tokens) -> float:
    if not tokens:
        return 0.0
    return sum(1 for token in tokens if token in field_lower) / len(tokens)


def score_field(value: str, variants: QueryVariants) -> float:
    """Best match strength of the query inside one field, in ``[0, 1]``."""
    if not value:
        return 0.0

    lower = value.lower()
    if variants.lower_trimmed and variants.lower_trimmed in lower:
        return 1.0
    if variants.lower_normalized and variants.lower_normalized in lower:
        return 1.0

    condensed = condense(lower)
    if variants.condensed_trimmed and variants.condensed_trimmed in condensed:
        return 1.0
    if variants.condensed_normalized and variants.condensed_normalized in condensed:
        return 1.0

    return token_coverage(lower, variants.lower_tokens)


def candidate_fields(document: CandidateDocument) -> Dict[str, str]:
    return {
        "title": document.title or "",
        "description": document.description or "",
        "summary": document.summary or "",
        "key_points": " ".join(document.key_points),
        "tags": " ".join(document.tags),
        "suggested_tags": " ".join(document.suggested_tags),
    }


def score_document(
    document: CandidateDocument,
    variants: QueryVariants,
    weights: Mapping[str, float] = DEFAULT_KEYWORD_WEIGHTS,
) -> float:
    total = sum(
        score_field(text, variants) * weights[name]
        for name, text in candidate_fields(document).items()
    )
    return min(1.0, total)


class KeywordRetriever:
    """Scores filtered candidate documents against the query variants."""

    def __init__(
        self,
        repository: DocumentRepository,
        field_weights: Optional[Mapping[str, float]] = None,
    ):
        self.repository = repository
        self.field_weights = dict(field_weights or DEFAULT_KEYWORD_WEIGHTS)

    async def search(
        self,
        variants: QueryVariants,
        filters: SearchFilters,
        limit: int,
    ) -> List[KeywordResult]:
        if variants.is_empty or limit < 1:
            return []

        candidates = await self.repository.find_keyword_candidates(
            filters, variants.match_terms(), limit * CANDIDATE_MULTIPLIER
        )
        used_fallback = False
        if not candidates:
            used_fallback = True
            candidates = await self.repository.get_recent_candidates(
                filters, min(limit * FALLBACK_MULTIPLIER, FALLBACK_MAX)
            )

        best: Dict[str, float] = {}
        for document in candidates:
            score = score_document(document, variants, self.field_weights)
            if score > 0 and score > best.get(document.id, 0.0):
                best[document.id] = score

        ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))[:limit]
        results = [KeywordResult(document_id=doc_id, text_score=score) for doc_id, score in ranked]

        logger.info(
            "Keyword search completed",
            candidates=len(candidates),
            results_count=len(results),
            recent_fallback=used_fallback,
        )
        return results

"""Result fusion algorithms for hybrid search."""

from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from libs.common.config import DEFAULT_BOOST_TIERS
from ..models import HybridResult, KeywordResult, VectorResult

logger = structlog.get_logger("search_fusion")

DEFAULT_VECTOR_WEIGHT = 0.65


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


def _rank(results: List[HybridResult], limit: int) -> List[HybridResult]:
    results.sort(key=lambda r: (-r.combined_score, r.document_id))
    return results[:limit]


class RankFusionAlgorithm:
    """Base class for rank fusion algorithms."""

    def fuse_results(
        self,
        vector_results: Sequence[VectorResult],
        keyword_results: Sequence[KeywordResult],
        limit: int,
    ) -> List[HybridResult]:
        """Fuse vector and keyword results into one ranking."""
        raise NotImplementedError


class BoostedWeightedFusion(RankFusionAlgorithm):
    """Weighted sum of vector and keyword scores with a high-similarity boost.

    For a document seen by both legs the combined score is
    ``v * w * boost(v) + t * (1 - w)``; a document seen by one leg keeps only
    that leg's term. ``boost`` is a step function over the vector similarity.
    An empty vector leg therefore yields the keyword ranking scored
    ``t * (1 - w)``.
    """

    def __init__(
        self,
        vector_weight: float = DEFAULT_VECTOR_WEIGHT,
        boost_tiers: Optional[Sequence[Tuple[float, float]]] = None,
    ):
        if not 0.0 <= vector_weight <= 1.0:
            raise ValueError("vector_weight must lie in [0, 1]")
        self.vector_weight = vector_weight
        self.boost_tiers = sorted(
            boost_tiers if boost_tiers is not None else DEFAULT_BOOST_TIERS,
            key=lambda tier: tier[0],
            reverse=True,
        )

    def boost(self, vector_score: float) -> float:
        for threshold, multiplier in self.boost_tiers:
            if vector_score >= threshold:
                return multiplier
        return 1.0

    def fuse_results(
        self,
        vector_results: Sequence[VectorResult],
        keyword_results: Sequence[KeywordResult],
        limit: int,
    ) -> List[HybridResult]:
        vector_map: Dict[str, float] = {}
        for r in vector_results:
            vector_map[r.document_id] = max(r.similarity_score, vector_map.get(r.document_id, 0.0))
        keyword_map: Dict[str, float] = {}
        for r in keyword_results:
            keyword_map[r.document_id] = max(r.text_score, keyword_map.get(r.document_id, 0.0))

        w = self.vector_weight
        fused = []
        for document_id in set(vector_map) | set(keyword_map):
            v = vector_map.get(document_id)
            t = keyword_map.get(document_id)
            score = 0.0
            if v is not None:
                score += v * w * self.boost(v)
            if t is not None:
                score += t * (1.0 - w)
            fused.append(
                HybridResult(
                    document_id=document_id,
                    combined_score=_clamp_unit(score),
                    vector_score=v,
                    text_score=t,
                )
            )

        if not vector_map and keyword_map:
            logger.info("Hybrid search degraded to keyword ranking", keyword_count=len(keyword_map))

        ranked = _rank(fused, limit)
        logger.info(
            "Weighted fusion completed",
            vector_count=len(vector_map),
            keyword_count=len(keyword_map),
            fused_count=len(fused),
            results_count=len(ranked),
        )
        return ranked


def create_fusion_algorithm(algorithm: str = "boosted_weighted", **params) -> RankFusionAlgorithm:
    """Factory function to create fusion algorithms."""
    algorithms = {
        "boosted_weighted": BoostedWeightedFusion,
    }

    if algorithm not in algorithms:
        raise ValueError(f"Unknown fusion algorithm: {algorithm}")

    return algorithms[algorithm](**params)

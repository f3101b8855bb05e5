"""Tests for boosted weighted fusion."""

import pytest

from service_search.app.models import KeywordResult, VectorResult
from service_search.app.ranking.fusion import BoostedWeightedFusion, create_fusion_algorithm


@pytest.fixture
def fusion():
    return BoostedWeightedFusion()


@pytest.mark.parametrize(
    "score, expected",
    [(1.0, 1.15), (0.95, 1.15), (0.90, 1.15), (0.85, 1.10), (0.80, 1.10), (0.75, 1.05), (0.70, 1.05), (0.69, 1.0), (0.0, 1.0)],
)
def test_boost_tiers(fusion, score, expected):
    assert fusion.boost(score) == expected


def test_boost_is_monotonic(fusion):
    scores = [i / 100 for i in range(101)]
    combined = [
        fusion.fuse_results([VectorResult("d", s)], [KeywordResult("d", 0.5)], limit=1)[0].combined_score
        for s in scores
    ]
    assert combined == sorted(combined)


def test_score_formula_per_leg(fusion):
    results = fusion.fuse_results(
        [VectorResult("both", 0.92), VectorResult("vector-only", 0.6)],
        [KeywordResult("both", 0.5), KeywordResult("keyword-only", 0.8)],
        limit=10,
    )
    by_id = {r.document_id: r for r in results}

    assert by_id["both"].combined_score == pytest.approx(0.92 * 0.65 * 1.15 + 0.5 * 0.35)
    assert by_id["both"].vector_score == 0.92
    assert by_id["both"].text_score == 0.5
    assert by_id["vector-only"].combined_score == pytest.approx(0.6 * 0.65)
    assert by_id["vector-only"].text_score is None
    assert by_id["keyword-only"].combined_score == pytest.approx(0.8 * 0.35)
    assert by_id["keyword-only"].vector_score is None
    assert [r.document_id for r in results] == ["both", "vector-only", "keyword-only"]


def test_combined_score_is_clamped(fusion):
    result = fusion.fuse_results([VectorResult("a", 1.0)], [KeywordResult("a", 1.0)], limit=1)[0]
    assert result.combined_score == 1.0


def test_keyword_only_when_vector_leg_empty(fusion):
    results = fusion.fuse_results([], [KeywordResult("a", 0.3), KeywordResult("b", 0.7)], limit=10)
    assert [r.document_id for r in results] == ["b", "a"]
    assert results[0].combined_score == pytest.approx(0.7 * 0.35)
    assert results[1].combined_score == pytest.approx(0.3 * 0.35)
    assert all(r.vector_score is None for r in results)


def test_both_legs_empty(fusion):
    assert fusion.fuse_results([], [], limit=10) == []


def test_ties_break_by_document_id_and_limit(fusion):
    results = fusion.fuse_results(
        [VectorResult("c", 0.5), VectorResult("a", 0.5), VectorResult("b", 0.5)],
        [],
        limit=2,
    )
    assert [r.document_id for r in results] == ["a", "b"]


def test_duplicate_ids_keep_best_score(fusion):
    results = fusion.fuse_results(
        [VectorResult("a", 0.4), VectorResult("a", 0.6)],
        [KeywordResult("a", 0.1), KeywordResult("a", 0.2)],
        limit=10,
    )
    assert len(results) == 1
    assert results[0].combined_score == pytest.approx(0.6 * 0.65 + 0.2 * 0.35)


def test_custom_weight_and_tiers():
    fusion = BoostedWeightedFusion(vector_weight=0.5, boost_tiers=[(0.5, 1.2)])
    result = fusion.fuse_results([VectorResult("a", 0.6)], [KeywordResult("a", 0.4)], limit=1)[0]
    assert result.combined_score == pytest.approx(0.6 * 0.5 * 1.2 + 0.4 * 0.5)


def test_machine_learning_scenario(fusion):
    results = fusion.fuse_results(
        [VectorResult("ml-intro", 0.92), VectorResult("other", 0.55)],
        [KeywordResult("other", 0.6), KeywordResult("ml-intro", 0.40 * 2 / 3)],
        limit=5,
    )
    assert results[0].document_id == "ml-intro"
    assert results[0].combined_score == pytest.approx(0.92 * 0.65 * 1.15 + (0.40 * 2 / 3) * 0.35)


def test_factory():
    assert isinstance(create_fusion_algorithm(), BoostedWeightedFusion)
    with pytest.raises(ValueError):
        create_fusion_algorithm("rrf")
    with pytest.raises(ValueError):
        BoostedWeightedFusion(vector_weight=1.5)

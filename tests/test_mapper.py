"""Tests for mapping short-ID model output back onto candidates."""

from __future__ import annotations

from personarank.normalize.schema import ShortIdMap
from personarank.rank.mapper import NOT_PROCESSED_FLAG, clamp_score, coerce_short_id, map_results, normalize_item


def test_short_ids_resolve_in_batch_order() -> None:
    id_map = ShortIdMap(["lead-a", "lead-b", "lead-c"])
    items = [
        {"id": 3, "is_relevant": False, "score": 5},
        {"id": "1", "is_relevant": True, "role_type": "decision_maker", "score": 95, "rank_within_company": 1},
        {"id": 2.0, "is_relevant": "true", "role_type": "champion", "score": 70, "rank_within_company": "2"},
    ]
    results = map_results(items, id_map)
    assert [r.lead_id for r in results] == ["lead-a", "lead-b", "lead-c"]
    assert results[0].role_type == "decision_maker"
    assert results[1].is_relevant
    assert results[1].rank_within_company == 2
    assert not results[2].is_relevant
    assert results[2].rank_within_company is None


def test_unknown_and_duplicate_ids_are_dropped() -> None:
    id_map = ShortIdMap(["lead-a", "lead-b"])
    items = [
        {"id": 1, "is_relevant": True, "score": 80, "reasoning": "first"},
        {"id": 1, "is_relevant": False, "score": 0, "reasoning": "second"},
        {"id": 9, "is_relevant": True, "score": 99},
        {"id": "abc"},
        "not an object",
    ]
    results = map_results(items, id_map)
    assert results[0].reasoning == "first"
    assert results[1].lead_id == "lead-b"
    assert results[1].flags == [NOT_PROCESSED_FLAG]
    assert results[1].reasoning == "Not processed by model"
    assert not results[1].is_relevant


def test_scores_are_clamped_and_rounded() -> None:
    assert clamp_score(150) == 100
    assert clamp_score(-3) == 0
    assert clamp_score("72.6") == 73
    assert clamp_score(None) == 0
    assert clamp_score(float("nan")) == 0


def test_coerce_short_id() -> None:
    assert coerce_short_id("4") == 4
    assert coerce_short_id(4.0) == 4
    assert coerce_short_id(4.5) is None
    assert coerce_short_id(True) is None
    assert coerce_short_id(None) is None


def test_role_is_consistent_with_relevance() -> None:
    irrelevant = normalize_item("x", {"is_relevant": False, "role_type": "decision_maker", "score": 20})
    assert irrelevant.role_type == "irrelevant"
    assert irrelevant.rank_within_company is None

    high = normalize_item("x", {"is_relevant": True, "role_type": "irrelevant", "score": 93})
    assert high.role_type == "decision_maker"
    low = normalize_item("x", {"is_relevant": True, "role_type": "irrelevant", "score": 60})
    assert low.role_type == "champion"


def test_high_score_implies_relevance() -> None:
    result = normalize_item("x", {"is_relevant": False, "score": 85})
    assert result.is_relevant
    assert result.role_type == "champion"


def test_unknown_role_is_inferred_from_score() -> None:
    assert normalize_item("x", {"is_relevant": True, "role_type": "buyer", "score": 95}).role_type == "decision_maker"


def test_rubric_and_flags() -> None:
    result = normalize_item(
        "x",
        {
            "is_relevant": True,
            "score": 88,
            "rubric": {"department_fit": 5, "seniority_fit": "4", "size_fit": None},
            "flags": ["recently_promoted", 3],
        },
    )
    assert (result.rubric.department_fit, result.rubric.seniority_fit, result.rubric.size_fit) == (5, 4, 0)
    assert result.flags == ["recently_promoted", "3"]


def test_fractional_short_id_claims_no_candidate() -> None:
    id_map = ShortIdMap(["lead-a", "lead-b"])
    items = [
        {"id": 1.7, "is_relevant": False, "score": 5, "reasoning": "bogus id"},
        {"id": 1, "is_relevant": True, "score": 95, "reasoning": "real answer for 1"},
        {"id": "2.5", "is_relevant": True, "score": 90, "reasoning": "bogus string id"},
        {"id": "2", "is_relevant": True, "score": 70, "reasoning": "real answer for 2"},
    ]
    first, second = map_results(items, id_map)
    assert first.reasoning == "real answer for 1"
    assert second.reasoning == "real answer for 2"
    assert coerce_short_id("4.5") is None
    assert coerce_short_id("4.0") == 4


def test_fractional_rank_is_dropped() -> None:
    result = normalize_item("x", {"is_relevant": True, "score": 80, "rank_within_company": 1.5})
    assert result.rank_within_company is None


def test_numeric_relevance_flags() -> None:
    assert normalize_item("x", {"is_relevant": 1, "score": 20}).is_relevant
    assert not normalize_item("x", {"is_relevant": 0, "score": 20}).is_relevant
    assert not normalize_item("x", {"is_relevant": "false", "score": 20}).is_relevant

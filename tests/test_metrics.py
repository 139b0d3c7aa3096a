"""Tests for F1, NDCG@3 and the composite score."""

from __future__ import annotations

import math

import pytest  # type: ignore

from personarank.optimize.eval_set import EvalLead
from personarank.optimize.metrics import (
    Prediction,
    company_ndcg,
    composite_score,
    compute_metrics,
    find_rank_mismatches,
)


def lead(lead_id: str, company: str, rank=None) -> EvalLead:
    return EvalLead(lead_id, lead_id.upper(), "Title", company, "51-200", rank)


ACME = [lead("a", "Acme", 1), lead("b", "Acme", 2), lead("c", "Acme")]


def test_perfect_predictions() -> None:
    predictions = {"a": Prediction(True, 1), "b": Prediction(True, 2), "c": Prediction(False)}
    metrics = compute_metrics(predictions, ACME)
    assert (metrics.precision, metrics.recall, metrics.f1) == (1.0, 1.0, 1.0)
    assert metrics.ndcg_at_3 == pytest.approx(1.0)
    assert metrics.composite == pytest.approx(1.0)
    assert metrics.false_positives == [] and metrics.false_negatives == []


def test_swapped_order_lowers_ndcg() -> None:
    predictions = {"a": Prediction(True, 2), "b": Prediction(True, 1)}
    # gains are max_rank - rank + 1: a=2, b=1
    dcg = 1 / math.log2(2) + 2 / math.log2(3)
    idcg = 2 / math.log2(2) + 1 / math.log2(3)
    assert company_ndcg(predictions, ACME) == pytest.approx(dcg / idcg)


def test_missing_prediction_counts_as_irrelevant() -> None:
    leads = ACME + [lead("d", "Acme", 3)]
    predictions = {"a": Prediction(True, 1), "b": Prediction(False), "c": Prediction(True, 2)}
    metrics = compute_metrics(predictions, leads)
    assert metrics.precision == pytest.approx(0.5)
    assert metrics.recall == pytest.approx(1 / 3)
    assert metrics.f1 == pytest.approx(0.4)
    assert [l.id for l in metrics.false_positives] == ["c"]
    assert [l.id for l in metrics.false_negatives] == ["b", "d"]
    assert metrics.composite == pytest.approx(0.6 * 0.4 + 0.4 * metrics.ndcg_at_3)


def test_companies_without_relevant_leads_are_not_averaged() -> None:
    leads = ACME + [lead("x", "Globex"), lead("y", "Globex")]
    predictions = {"a": Prediction(True, 1), "b": Prediction(True, 2), "x": Prediction(True, 1)}
    metrics = compute_metrics(predictions, leads)
    assert company_ndcg(predictions, leads[3:]) is None
    assert metrics.ndcg_at_3 == pytest.approx(1.0)


def test_no_predictions_scores_zero() -> None:
    metrics = compute_metrics({}, ACME)
    assert (metrics.f1, metrics.ndcg_at_3, metrics.composite) == (0.0, 0.0, 0.0)


def test_composite_weights() -> None:
    assert composite_score(0.5, 1.0) == pytest.approx(0.7)
    assert composite_score(1.0, 0.0) == pytest.approx(0.6)


def test_rank_mismatches_beyond_tolerance() -> None:
    leads = [lead(f"l{i}", "Acme", i) for i in range(1, 6)]
    predictions = {
        "l1": Prediction(True, 5),
        "l2": Prediction(True, 4),
        "l3": Prediction(True, 3),
        "l4": Prediction(False),
        "l5": Prediction(True, 1),
    }
    mismatches = find_rank_mismatches(predictions, leads)
    assert [(m.lead.id, m.predicted_rank, m.actual_rank) for m in mismatches] == [("l1", 5, 1), ("l5", 1, 5)]
    assert all(m.magnitude == 4 for m in mismatches)


def test_no_company_with_relevant_leads() -> None:
    leads = [lead("x", "Globex"), lead("y", "Globex"), lead("z", "Initech")]
    predictions = {"x": Prediction(True, 1), "y": Prediction(False), "z": Prediction(False)}
    metrics = compute_metrics(predictions, leads)
    assert metrics.ndcg_at_3 == 0.0
    assert metrics.composite == pytest.approx(0.6 * metrics.f1)
    assert [l.id for l in metrics.false_positives] == ["x"]

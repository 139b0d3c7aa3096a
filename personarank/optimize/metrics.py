"""
Ranking-quality metrics.

Two numbers drive the optimizer:

* **F1** over the binary relevant/irrelevant decision across the whole
  evaluation set.  A labeled lead with no prediction counts as predicted
  irrelevant; it never leaves the denominator.
* **NDCG@3** per company, averaged over companies that have at least one
  ground-truth-relevant lead.  Predicted-relevant leads are ordered by
  predicted rank; a lead's gain is ``max_rank - rank + 1`` when it is
  relevant in the ground truth and 0 otherwise.

The composite ``0.6 * F1 + 0.4 * NDCG@3`` is the only criterion used to
compare prompt versions.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from ..constants import COMPOSITE_F1_WEIGHT, COMPOSITE_NDCG_WEIGHT, RANK_MISMATCH_TOLERANCE
from .eval_set import EvalLead, group_by_company


@dataclass(frozen=True)
class Prediction:
    is_relevant: bool
    rank: Optional[int] = None


@dataclass
class Metrics:
    precision: float
    recall: float
    f1: float
    ndcg_at_3: float
    composite: float
    false_positives: List[EvalLead] = field(default_factory=list)
    false_negatives: List[EvalLead] = field(default_factory=list)

    def summary(self) -> Dict[str, float]:
        """Numeric fields only, for storage on a prompt version."""
        return {
            "precision": self.precision,
            "recall": self.recall,
            "f1": self.f1,
            "ndcg_at_3": self.ndcg_at_3,
            "composite": self.composite,
        }


@dataclass(frozen=True)
class RankMismatch:
    lead: EvalLead
    predicted_rank: int
    actual_rank: int

    @property
    def magnitude(self) -> int:
        return abs(self.predicted_rank - self.actual_rank)


def composite_score(f1: float, ndcg: float) -> float:
    return COMPOSITE_F1_WEIGHT * f1 + COMPOSITE_NDCG_WEIGHT * ndcg


def compute_metrics(predictions: Mapping[str, Prediction], ground_truth: Sequence[EvalLead], k: int = 3) -> Metrics:
    tp = fp = fn = 0
    false_positives: List[EvalLead] = []
    false_negatives: List[EvalLead] = []
    for lead in ground_truth:
        prediction = predictions.get(lead.id)
        predicted = prediction.is_relevant if prediction else False
        if predicted and lead.is_relevant:
            tp += 1
        elif predicted:
            fp += 1
            false_positives.append(lead)
        elif lead.is_relevant:
            fn += 1
            false_negatives.append(lead)

    precision = tp / (tp + fp) if tp + fp else 0.0
    recall = tp / (tp + fn) if tp + fn else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    ndcg = average_ndcg(predictions, ground_truth, k)
    return Metrics(precision, recall, f1, ndcg, composite_score(f1, ndcg), false_positives, false_negatives)


def _dcg(gains: Sequence[float], k: int) -> float:
    # 1-indexed position p contributes gain / log2(p + 1)
    return sum(gain / math.log2(position + 1) for position, gain in enumerate(gains[:k], start=1))


def company_ndcg(predictions: Mapping[str, Prediction], leads: Sequence[EvalLead], k: int = 3) -> Optional[float]:
    """NDCG@k for one company, or ``None`` when it cannot contribute."""
    ranked = [lead for lead in leads if lead.is_relevant]
    if not ranked:
        return None
    max_rank = max(lead.ground_truth_rank for lead in ranked)  # type: ignore[type-var]

    def gain(lead: EvalLead) -> float:
        return float(max_rank - lead.ground_truth_rank + 1) if lead.is_relevant else 0.0  # type: ignore[operator]

    predicted = [
        (predictions[lead.id].rank, lead)
        for lead in leads
        if lead.id in predictions and predictions[lead.id].is_relevant and predictions[lead.id].rank is not None
    ]
    predicted.sort(key=lambda pair: pair[0])
    ideal = sorted((gain(lead) for lead in ranked), reverse=True)
    idcg = _dcg(ideal, k)
    if idcg <= 0:
        return None
    return _dcg([gain(lead) for _, lead in predicted], k) / idcg


def average_ndcg(predictions: Mapping[str, Prediction], ground_truth: Sequence[EvalLead], k: int = 3) -> float:
    scores: List[float] = []
    for leads in group_by_company(ground_truth).values():
        score = company_ndcg(predictions, leads, k)
        if score is not None:
            scores.append(score)
    return sum(scores) / len(scores) if scores else 0.0


def find_rank_mismatches(
    predictions: Mapping[str, Prediction],
    ground_truth: Sequence[EvalLead],
    tolerance: int = RANK_MISMATCH_TOLERANCE,
) -> List[RankMismatch]:
    """Predicted-relevant, ground-truth-ranked leads more than ``tolerance`` places off, worst first."""
    mismatches: List[RankMismatch] = []
    for leads in group_by_company(ground_truth).values():
        for lead in sorted((l for l in leads if l.is_relevant), key=lambda l: l.ground_truth_rank):
            prediction = predictions.get(lead.id)
            if not prediction or not prediction.is_relevant or prediction.rank is None:
                continue
            if abs(prediction.rank - lead.ground_truth_rank) > tolerance:  # type: ignore[operator]
                mismatches.append(RankMismatch(lead, prediction.rank, lead.ground_truth_rank))  # type: ignore[arg-type]
    mismatches.sort(key=lambda m: m.magnitude, reverse=True)
    return mismatches

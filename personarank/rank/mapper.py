"""
Reconcile short-ID model output with the real candidates of a batch.

The model answers with ``{"id": <short id>, ...}`` items.  Each item is
resolved through the batch's :class:`ShortIdMap`; unknown or repeated
IDs are logged and dropped.  Field values are normalized (string
booleans, out-of-range scores, roles outside the three-value enum) and
every candidate the model skipped is filled with an explicit "not
processed" result, so the output always has one entry per candidate.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..constants import DECISION_MAKER_SCORE_THRESHOLD, RELEVANCE_SCORE_THRESHOLD
from ..normalize.schema import ROLE_TYPES, RankingResult, Rubric, ShortIdMap

logger = logging.getLogger(__name__)

NOT_PROCESSED_REASONING = "Not processed by model"
NOT_PROCESSED_FLAG = "not_processed"


def not_processed(lead_id: str, reasoning: str = NOT_PROCESSED_REASONING) -> RankingResult:
    return RankingResult(lead_id=lead_id, reasoning=reasoning, flags=[NOT_PROCESSED_FLAG])


def coerce_short_id(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        as_float = float(raw)
    except (TypeError, ValueError):
        return None
    # 1.7 or "4.5" names no candidate
    return int(as_float) if as_float.is_integer() else None


def clamp_score(raw: Any) -> int:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if value != value:  # NaN
        return 0
    return int(round(min(100.0, max(0.0, value))))


def _coerce_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw != 0
    return raw is True


def infer_role(score: int) -> str:
    if score >= DECISION_MAKER_SCORE_THRESHOLD:
        return "decision_maker"
    if score >= RELEVANCE_SCORE_THRESHOLD:
        return "champion"
    return "irrelevant"


def _rubric(raw: Any) -> Rubric:
    if not isinstance(raw, dict):
        return Rubric()

    def part(name: str) -> int:
        try:
            return int(raw.get(name) or 0)
        except (TypeError, ValueError):
            return 0

    return Rubric(part("department_fit"), part("seniority_fit"), part("size_fit"))


def _provisional_rank(raw: Any) -> Optional[int]:
    rank = coerce_short_id(raw)
    return rank if rank is not None and rank > 0 else None


def normalize_item(lead_id: str, item: Dict[str, Any]) -> RankingResult:
    """Turn one decoded model item into a :class:`RankingResult`."""
    score = clamp_score(item.get("score", 0))
    is_relevant = _coerce_bool(item.get("is_relevant"))
    if score >= RELEVANCE_SCORE_THRESHOLD and not is_relevant:
        # the score is the stronger signal
        is_relevant = True

    role = item.get("role_type")
    if role not in ROLE_TYPES:
        role = infer_role(score)
    if not is_relevant:
        role = "irrelevant"
    elif role == "irrelevant":
        role = "decision_maker" if score >= DECISION_MAKER_SCORE_THRESHOLD else "champion"

    flags = item.get("flags")
    return RankingResult(
        lead_id=lead_id,
        is_relevant=is_relevant,
        role_type=role,
        score=score,
        rank_within_company=_provisional_rank(item.get("rank_within_company")) if is_relevant else None,
        rubric=_rubric(item.get("rubric")),
        reasoning=str(item.get("reasoning") or ""),
        flags=[str(f) for f in flags] if isinstance(flags, list) else [],
    )


def map_results(items: Iterable[Dict[str, Any]], id_map: ShortIdMap) -> List[RankingResult]:
    """Map model items back onto the batch, one result per candidate.

    The output follows the order of ``id_map``.
    """
    mapped: Dict[str, RankingResult] = {}
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object result item: %r", item)
            continue
        short_id = coerce_short_id(item.get("id"))
        lead_id = id_map.resolve(short_id) if short_id is not None else None
        if lead_id is None:
            logger.warning("Unmapped short ID %r in model output", item.get("id"))
            continue
        if lead_id in mapped:
            logger.warning("Duplicate short ID %s in model output", short_id)
            continue
        mapped[lead_id] = normalize_item(lead_id, item)

    results: List[RankingResult] = []
    for short_id, lead_id in id_map.items():
        result = mapped.get(lead_id)
        if result is None:
            logger.warning("Model returned no result for short ID %s", short_id)
            result = not_processed(lead_id)
        results.append(result)
    return results

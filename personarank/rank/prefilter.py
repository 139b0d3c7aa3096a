"""
Prefilter gate for ranking.

This stage removes structurally irrelevant leads (HR, finance, legal,
support, board members, interns, and executives who are too far from
outbound at larger companies) before any LLM call is made.  The gate is
a pure function of the title and size bucket, so its decisions are
reproducible and cheap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from ..normalize.schema import Candidate
from ..normalize.title import normalize_title
from .rules import (
    GTM_SALES_CONTEXT,
    HARD_EXCLUSION_RULES,
    SIZE_DEPENDENT_RULES,
    SIZE_MISMATCH_CODE,
    STARTUP_FINANCE_EXCEPTION,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrefilterResult:
    should_exclude: bool
    reason: Optional[str] = None
    code: Optional[str] = None


PASS = PrefilterResult(False)


def prefilter_lead(title: str, normalized_title: str | None, size_bucket: Optional[str]) -> PrefilterResult:
    """Decide whether a lead is excluded before ranking.

    Args:
        title: Raw title, used only when no normalized title is supplied.
        normalized_title: Output of :func:`normalize_title`.
        size_bucket: Company size bucket or ``None`` when unknown.

    Returns:
        A :class:`PrefilterResult`; ``code`` is the rule code (``HR``,
        ``FINANCE``, ... or ``SIZE_MISMATCH``) when excluded.
    """
    text = normalized_title if normalized_title is not None else normalize_title(title)

    for rule in HARD_EXCLUSION_RULES:
        if not rule.pattern.search(text):
            continue
        if size_bucket == "startup" and STARTUP_FINANCE_EXCEPTION.search(text):
            continue
        return PrefilterResult(True, rule.reason, rule.code)

    for size_rule in SIZE_DEPENDENT_RULES:
        if size_bucket not in size_rule.exclude_at:
            continue
        if not size_rule.pattern.search(text):
            continue
        # "President of Sales", "Founder & Head of Growth"
        if GTM_SALES_CONTEXT.search(text):
            continue
        return PrefilterResult(True, size_rule.reason, SIZE_MISMATCH_CODE)

    return PASS


def partition_candidates(
    candidates: Iterable[Candidate], size_bucket: Optional[str]
) -> Tuple[List[Candidate], List[Tuple[Candidate, PrefilterResult]]]:
    """Split candidates into (passed, excluded-with-reason)."""
    passed: List[Candidate] = []
    excluded: List[Tuple[Candidate, PrefilterResult]] = []
    for candidate in candidates:
        normalized = candidate.normalized_title or normalize_title(candidate.title)
        result = prefilter_lead(candidate.title, normalized, size_bucket)
        if result.should_exclude:
            logger.debug("Gate excluded %s (%s): %s", candidate.full_name, candidate.title, result.code)
            excluded.append((candidate, result))
        else:
            passed.append(candidate)
    logger.info("Prefiltered %d -> %d leads", len(passed) + len(excluded), len(passed))
    return passed, excluded

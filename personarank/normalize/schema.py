"""
Record types for the ranking pipeline.

`Company` and `Candidate` describe the input side; `RankingResult` is
the per-candidate output of the ranking stage.  `ShortIdMap` is the
ephemeral bijection between the small integers shown to the model and
the real candidate IDs of one batch.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Iterator, List, Optional

ROLE_TYPES = ("decision_maker", "champion", "irrelevant")


@dataclass
class Company:
    id: str
    name: str
    employee_range: str = ""
    size_bucket: Optional[str] = None
    domain: Optional[str] = None
    industry: Optional[str] = None
    context_summary: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class Candidate:
    """A lead to be judged.  ``normalized_title`` is derived at ingest."""

    id: str
    full_name: str
    title: str
    normalized_title: str = ""
    company_id: str = ""


@dataclass
class Rubric:
    department_fit: int = 0
    seniority_fit: int = 0
    size_fit: int = 0


@dataclass
class RankingResult:
    """Outcome of ranking one candidate.

    ``rank_within_company`` is ``None`` for irrelevant candidates and is
    only authoritative after the orchestrator has finalized ranks for the
    whole company.
    """

    lead_id: str
    is_relevant: bool = False
    role_type: str = "irrelevant"
    score: int = 0
    rank_within_company: Optional[int] = None
    rubric: Rubric = field(default_factory=Rubric)
    reasoning: str = ""
    flags: List[str] = field(default_factory=list)
    excluded_by_gate: bool = False
    exclusion_reason: Optional[str] = None

    def to_record(self) -> Dict[str, object]:
        """Fields merged onto the stored lead record."""
        return {
            "is_relevant": self.is_relevant,
            "role_type": self.role_type,
            "score": self.score,
            "rank_within_company": self.rank_within_company,
            "rubric": asdict(self.rubric),
            "reasoning": self.reasoning,
            "flags": list(self.flags),
            "excluded_by_gate": self.excluded_by_gate,
            "exclusion_reason": self.exclusion_reason,
        }


class ShortIdMap:
    """1-indexed short ID -> real candidate ID for a single LLM call."""

    def __init__(self, candidate_ids: List[str]) -> None:
        self._ids: Dict[int, str] = {i + 1: cid for i, cid in enumerate(candidate_ids)}

    def resolve(self, short_id: int) -> Optional[str]:
        return self._ids.get(short_id)

    def items(self):
        return self._ids.items()

    def real_ids(self) -> List[str]:
        return list(self._ids.values())

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[int]:
        return iter(self._ids)

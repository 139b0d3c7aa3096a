"""
Labeled evaluation set.

The optimizer scores prompt versions against a hand-ranked CSV of
leads.  Expected columns (header names are matched case-insensitively
against a few aliases): full name, title, company, employee range and
rank.  A positive integer rank marks a relevant lead (1 = best within
its company); ``-`` or an empty cell marks an irrelevant one.  Rows
missing a name, title or company are skipped.
"""

from __future__ import annotations

import csv
import hashlib
import io
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import EvalSetError

logger = logging.getLogger(__name__)

COLUMN_ALIASES: Dict[str, Sequence[str]] = {
    "name": ("Full Name", "Name", "FullName"),
    "title": ("Title", "Job Title"),
    "company": ("Company", "Company Name"),
    "employee_range": ("Employee Range", "Employees", "Size"),
    "rank": ("Rank", "Ground Truth Rank", "TruthRank"),
}
REQUIRED_COLUMNS = ("name", "title", "company", "rank")


@dataclass(frozen=True)
class EvalLead:
    id: str
    full_name: str
    title: str
    company: str
    employee_range: str
    ground_truth_rank: Optional[int]  # None = irrelevant

    @property
    def is_relevant(self) -> bool:
        return self.ground_truth_rank is not None


@dataclass
class EvalSet:
    leads: List[EvalLead]

    def by_company(self) -> "OrderedDict[str, List[EvalLead]]":
        return group_by_company(self.leads)

    @property
    def stats(self) -> Dict[str, int]:
        ranked = sum(1 for lead in self.leads if lead.is_relevant)
        return {
            "total_leads": len(self.leads),
            "ranked_leads": ranked,
            "irrelevant_leads": len(self.leads) - ranked,
            "unique_companies": len(self.by_company()),
        }


def stable_lead_id(full_name: str, company: str, title: str) -> str:
    """Deterministic ID used to join predictions to ground truth."""
    normalized = f"{full_name.lower()}|{company.lower()}|{title.lower()}"
    normalized = re.sub(r"[^a-z0-9|]", "", normalized)[:100]
    digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:12]
    return f"eval_{digest}_{normalized[:20]}"


def _parse_rank(raw: Optional[str]) -> Optional[int]:
    value = (raw or "").strip()
    if value in ("", "-"):
        return None
    match = re.match(r"^\d+", value)
    if not match:
        return None
    rank = int(match.group(0))
    return rank if rank > 0 else None


def _resolve_columns(fieldnames: Sequence[str]) -> Dict[str, str]:
    lookup = {name.strip().lower(): name for name in fieldnames if name}
    columns: Dict[str, str] = {}
    for key, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias.lower() in lookup:
                columns[key] = lookup[alias.lower()]
                break
    missing = [key for key in REQUIRED_COLUMNS if key not in columns]
    if missing:
        raise EvalSetError(f"Missing required columns {missing}. Found: {', '.join(fieldnames)}")
    return columns


def parse_eval_set(csv_content: str) -> EvalSet:
    """Parse CSV text into an :class:`EvalSet`."""
    reader = csv.DictReader(io.StringIO(csv_content.strip()))
    if not reader.fieldnames:
        raise EvalSetError("Evaluation set is empty")
    columns = _resolve_columns(reader.fieldnames)
    leads: List[EvalLead] = []
    for row in reader:
        def cell(key: str) -> str:
            column = columns.get(key)
            return (row.get(column) or "").strip() if column else ""

        full_name, title, company = cell("name"), cell("title"), cell("company")
        if not full_name or not title or not company:
            continue
        leads.append(
            EvalLead(
                id=stable_lead_id(full_name, company, title),
                full_name=full_name,
                title=title,
                company=company,
                employee_range=cell("employee_range"),
                ground_truth_rank=_parse_rank(cell("rank")),
            )
        )
    logger.info("Loaded %d evaluation leads", len(leads))
    return EvalSet(leads)


def load_eval_set(path: str | Path) -> EvalSet:
    path = Path(path)
    if not path.exists():
        raise EvalSetError(f"Eval set file not found: {path}")
    with open(path, "r", encoding="utf-8-sig") as f:
        return parse_eval_set(f.read())


def group_by_company(leads: Sequence[EvalLead]) -> "OrderedDict[str, List[EvalLead]]":
    grouped: "OrderedDict[str, List[EvalLead]]" = OrderedDict()
    for lead in leads:
        grouped.setdefault(lead.company, []).append(lead)
    return grouped

"""
Rule tables for the prefilter gate.

Patterns are matched case-insensitively against the *normalized* title,
so acronyms have already been expanded ("ceo" -> "chief executive
officer") by the time they are checked here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Pattern, Tuple


@dataclass(frozen=True)
class ExclusionRule:
    pattern: Pattern[str]
    reason: str
    code: str


@dataclass(frozen=True)
class SizeRule:
    pattern: Pattern[str]
    exclude_at: Tuple[str, ...]
    reason: str


def _rx(expr: str) -> Pattern[str]:
    return re.compile(expr, re.IGNORECASE)


# Titles that carry a sales/GTM context and override size-dependent rules
GTM_SALES_CONTEXT = _rx(
    r"\b(sales|revenue|growth|gtm|go[-\s]?to[-\s]?market|commercial|business development|biz\s?dev)\b"
)

# Finance leaders at startups often act as the operational approver
STARTUP_FINANCE_EXCEPTION = _rx(
    r"\b(cfo|chief financial officer|head of finance|vp finance|finance director"
    r"|director of finance|head of fp&a|finance lead)\b"
)

HARD_EXCLUSION_RULES: List[ExclusionRule] = [
    ExclusionRule(
        _rx(r"\b(hr|human resources|talent acquisition|recruiter|recruiting|people operations)\b"),
        "HR/Recruiting",
        "HR",
    ),
    ExclusionRule(
        _rx(r"\b(finance|accounting|accountant|fp&a|controller|bookkeeper|payroll)\b"),
        "Finance/Accounting",
        "FINANCE",
    ),
    ExclusionRule(_rx(r"\b(legal|compliance|counsel|attorney|lawyer|paralegal)\b"), "Legal", "LEGAL"),
    ExclusionRule(
        _rx(r"\b(customer (support|success|service)|cs manager|support (engineer|specialist))\b"),
        "Customer Support",
        "CS",
    ),
    ExclusionRule(
        _rx(r"\b(investor|board member|board of directors|advisory board|angel investor)\b"),
        "Investor/Board",
        "BOARD",
    ),
    ExclusionRule(_rx(r"\b(intern|student|trainee|apprentice|co-op)\b"), "Intern/Student", "INTERN"),
]

SIZE_DEPENDENT_RULES: List[SizeRule] = [
    SizeRule(_rx(r"\b(ceo|chief executive)\b"), ("mid_market", "enterprise"), "CEO too removed at larger companies"),
    SizeRule(
        _rx(r"\bpresident\b"),
        ("mid_market", "enterprise"),
        "President too removed (unless GTM/Sales context)",
    ),
    SizeRule(_rx(r"\b(founder|co-founder)\b"), ("enterprise",), "Founder too removed at enterprise"),
]

SIZE_MISMATCH_CODE = "SIZE_MISMATCH"

"""
Job title normalization.

Titles arrive in many shapes ("SVP, Sales | ACME", "VP Sales @ Foo",
"Head of RevOps (EMEA)").  The prefilter gate and the prompt only ever
see the normalized form: lower case, decorative suffixes and
parentheticals removed, common acronyms expanded and whitespace
collapsed.  The function is total and never raises.
"""

from __future__ import annotations

import re
from typing import Dict, List, Pattern, Tuple

# Order matters: "svp"/"evp" must expand before "vp".
TITLE_ACRONYMS: Dict[str, str] = {
    "svp": "senior vice president",
    "evp": "executive vice president",
    "vp": "vice president",
    "cro": "chief revenue officer",
    "coo": "chief operating officer",
    "cfo": "chief financial officer",
    "cto": "chief technology officer",
    "ceo": "chief executive officer",
    "cmo": "chief marketing officer",
    "sdr": "sales development representative",
    "bdr": "business development representative",
    "ae": "account executive",
    "revops": "revenue operations",
    "gtm": "go to market",
    "md": "managing director",
}

_NOISE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\s*\|.*$"),  # "VP Sales | Acme"
    re.compile(r"\s*@.*$"),  # "VP Sales @ Acme"
    re.compile(r"\(.*?\)"),
    re.compile(r"[,;]"),
    re.compile(r"\s+"),
]

_ACRONYM_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(rf"\b{abbrev}\b", re.IGNORECASE), full) for abbrev, full in TITLE_ACRONYMS.items()
]


def normalize_title(title: str | None) -> str:
    """Return the canonical form of ``title`` ("" for empty input)."""
    if not title:
        return ""
    normalized = title.lower().strip()
    for pattern in _NOISE_PATTERNS:
        normalized = pattern.sub(" ", normalized)
    for pattern, full in _ACRONYM_PATTERNS:
        normalized = pattern.sub(full, normalized)
    return re.sub(r"\s+", " ", normalized).strip()

"""
Employee-range to size-bucket mapping.

Range strings come from CRM exports in a handful of shapes ("51-200",
"51 – 200", "10,001+").  After removing spaces and unifying dashes the
string is looked up in a fixed table.  Unknown ranges map to ``None``;
callers treat that as its own category rather than an error.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

SIZE_BUCKETS: Tuple[str, ...] = ("startup", "smb", "mid_market", "enterprise")

SIZE_MAPPINGS: Dict[str, str] = {
    "1-10": "startup",
    "2-10": "startup",
    "11-50": "startup",
    "1-50": "startup",
    "1-20": "startup",
    "51-200": "smb",
    "11-200": "smb",
    "50-200": "smb",
    "201-500": "mid_market",
    "501-1000": "mid_market",
    "201-1000": "mid_market",
    "200-500": "mid_market",
    "500+": "mid_market",
    "1001-5000": "enterprise",
    "5001-10000": "enterprise",
    "10001+": "enterprise",
    "1000+": "enterprise",
    "10000+": "enterprise",
    "5000+": "enterprise",
}


def _clean_range(employee_range: str) -> str:
    cleaned = employee_range.lower().replace("–", "-").replace("—", "-")
    # thousands separators show up in exports ("1,001-5,000")
    cleaned = cleaned.replace(",", "")
    return "".join(cleaned.split())


def normalize_size_bucket(employee_range: str | None) -> Optional[str]:
    """Map an employee range to one of :data:`SIZE_BUCKETS` or ``None``."""
    if not employee_range:
        return None
    return SIZE_MAPPINGS.get(_clean_range(employee_range))

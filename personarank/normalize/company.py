"""Canonical company keys used to group lead rows into companies."""

from __future__ import annotations

import re
from typing import Optional

_SCHEME_OR_WWW = re.compile(r"^(https?://)?(www\.)?")


def canonical_key(name: str | None, domain: Optional[str] = None) -> str:
    """Return a stable grouping key for a company.

    The domain wins when present because it survives renames and
    punctuation differences ("Acme, Inc." vs "ACME Inc").  Otherwise the
    name is lower-cased with punctuation removed and whitespace
    collapsed.
    """
    if domain and domain.strip():
        key = _SCHEME_OR_WWW.sub("", domain.strip().lower())
        return key.rstrip("/").strip()
    if not name:
        return ""
    key = re.sub(r"[^\w\s]", "", name.lower())
    return re.sub(r"\s+", " ", key).strip()

"""
Recovery of JSON payloads from model output.

Models wrap JSON in ``<think>`` blocks and Markdown fences, prepend
chatter, and (most often during optimization) stop mid-stream when they
hit the token ceiling.  :func:`extract_json_response` tries a fixed
ladder of strategies:

1. strip thinking blocks and parse directly;
2. pull the outermost ``{...}`` (or ``[...]``, wrapped as
   ``{"results": [...]}``) out of surrounding text;
3. truncation repair starting at the first ``{``: when a ``"results": [``
   array is present, cut back to the last fully closed element and close
   the document, otherwise close open strings and brackets;
4. unwrap a JSON document that was itself returned as a JSON string.

:func:`decode_ranking_response` runs the same ladder but reports which
branch was taken as a tagged value (:class:`Ok`, :class:`RepairedPartial`
or :class:`Unparseable`) so callers branch on data instead of catching
exceptions.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from ..constants import MAX_ERROR_MESSAGE_LENGTH
from ..errors import JSONExtractionError

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>")
_OBJECT = re.compile(r"\{[\s\S]*\}")
_ARRAY = re.compile(r"\[[\s\S]*\]")
_RESULTS_MARKER = re.compile(r'"results"\s*:\s*\[')


@dataclass(frozen=True)
class Ok:
    results: List[Dict[str, Any]]


@dataclass(frozen=True)
class RepairedPartial:
    results: List[Dict[str, Any]]
    dropped_count: int


@dataclass(frozen=True)
class Unparseable:
    raw_snippet: str
    reason: str = "unparseable"


DecodeResult = Union[Ok, RepairedPartial, Unparseable]


def _loads(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def _as_document(value: Any) -> Any:
    return {"results": value} if isinstance(value, list) else value


def _scan_array(text: str, start: int) -> Tuple[Optional[int], bool, bool]:
    """Walk an array body starting just after its ``[``.

    Returns ``(end, partial, closed)`` where ``end`` is the index just past
    the last fully closed element, ``partial`` says whether an unfinished
    element follows it and ``closed`` whether the array's own ``]`` was
    reached.
    """
    depth = 0
    in_string = False
    escaped = False
    last_end: Optional[int] = None
    partial = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            if depth == 0:
                partial = True
        elif ch in "{[":
            if depth == 0:
                partial = True
            depth += 1
        elif ch in "}]":
            if depth == 0:
                return last_end, partial, True
            depth -= 1
            if depth == 0:
                last_end = i + 1
                partial = False
        elif depth == 0 and not ch.isspace() and ch != ",":
            partial = True
    return last_end, partial, False


def _repair_results_array(text: str) -> Optional[Tuple[Any, int]]:
    marker = _RESULTS_MARKER.search(text)
    if not marker:
        return None
    last_end, partial, closed = _scan_array(text, marker.end())
    if closed or last_end is None:
        return None
    healed = text[:last_end] + "]}"
    value = _loads(healed)
    if value is None:
        return None
    return value, 1 if partial else 0


def _close_open_structures(text: str) -> str:
    """Close a dangling string and every unclosed bracket, innermost first."""
    repaired = text.strip()
    if repaired.endswith("..."):
        repaired = repaired[:-3].rstrip()
    if repaired.endswith("\\"):
        repaired = repaired[:-1]

    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in repaired:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "}]" and stack:
            stack.pop()
    if in_string:
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    elif repaired.endswith(":"):
        repaired += " null"
    return repaired + "".join(reversed(stack))


def _extract(text: str) -> Tuple[Any, bool, int]:
    """Run the strategy ladder; returns ``(document, repaired, dropped)``."""
    clean = _THINK_BLOCK.sub("", text or "").strip()

    value = _loads(clean)
    if isinstance(value, (dict, list)):
        return _as_document(value), False, 0

    match = _OBJECT.search(clean)
    if match:
        value = _loads(match.group(0))
        if value is not None:
            return value, False, 0
    match = _ARRAY.search(clean)
    if match:
        value = _loads(match.group(0))
        if isinstance(value, list):
            return {"results": value}, False, 0

    start = clean.find("{")
    if start != -1:
        truncated = clean[start:]
        healed = _repair_results_array(truncated)
        if healed is not None:
            logger.warning("Recovered truncated results array (dropped %d incomplete item)", healed[1])
            return healed[0], True, healed[1]
        value = _loads(_close_open_structures(truncated))
        if value is not None:
            logger.warning("Recovered truncated JSON by closing open structures")
            return value, True, 0

    if len(clean) >= 2 and clean.startswith('"') and clean.endswith('"'):
        inner = _loads(clean)
        if isinstance(inner, str):
            value = _loads(inner)
            if value is not None:
                return _as_document(value), False, 0

    raise JSONExtractionError(clean)


def extract_json_response(text: str) -> Any:
    """Return the JSON document embedded in ``text``.

    Raises:
        JSONExtractionError: when every strategy fails.
    """
    document, _, _ = _extract(text)
    return document


def decode_ranking_response(text: str) -> DecodeResult:
    """Decode a ranking answer into a tagged result."""
    try:
        document, repaired, dropped = _extract(text)
    except JSONExtractionError as exc:
        return Unparseable(exc.snippet)
    results = document.get("results") if isinstance(document, dict) else None
    if not isinstance(results, list):
        return Unparseable((text or "")[:MAX_ERROR_MESSAGE_LENGTH], reason="missing results array")
    if repaired:
        return RepairedPartial(results, dropped)
    return Ok(results)

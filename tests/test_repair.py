"""Tests for JSON recovery from model output."""

from __future__ import annotations

import json

import pytest  # type: ignore

from personarank.errors import JSONExtractionError
from personarank.rank.repair import Ok, RepairedPartial, Unparseable, decode_ranking_response, extract_json_response

WELL_FORMED = {
    "results": [
        {"id": 1, "is_relevant": True, "score": 90, "reasoning": "VP Sales"},
        {"id": 2, "is_relevant": False, "score": 0, "reasoning": "HR"},
    ]
}


def test_well_formed_document_is_unchanged() -> None:
    text = json.dumps(WELL_FORMED)
    assert extract_json_response(text) == WELL_FORMED
    assert decode_ranking_response(text) == Ok(WELL_FORMED["results"])


def test_think_block_and_fence_are_stripped() -> None:
    text = "<think>the user wants {json}</think>\nHere you go:\n```json\n" + json.dumps(WELL_FORMED) + "\n```"
    assert extract_json_response(text) == WELL_FORMED


def test_bare_array_is_wrapped() -> None:
    text = json.dumps(WELL_FORMED["results"])
    assert extract_json_response(text) == WELL_FORMED
    assert extract_json_response("Results: " + text + " -- done") == WELL_FORMED


def test_truncated_results_drop_incomplete_item() -> None:
    text = (
        '{"results": [{"id": 1, "is_relevant": true, "score": 90, "reasoning": "VP Sales"}, '
        '{"id": 2, "is_relevant": false, "reasoning": "Works in H'
    )
    decoded = decode_ranking_response(text)
    assert isinstance(decoded, RepairedPartial)
    assert decoded.dropped_count == 1
    assert [item["id"] for item in decoded.results] == [1]


def test_truncation_between_items_drops_nothing() -> None:
    text = '{"results": [{"id": 1, "score": 90}, {"id": 2, "score": 10},'
    decoded = decode_ranking_response(text)
    assert isinstance(decoded, RepairedPartial)
    assert decoded.dropped_count == 0
    assert [item["id"] for item in decoded.results] == [1, 2]


def test_braces_inside_strings_do_not_confuse_repair() -> None:
    text = '{"results": [{"id": 1, "reasoning": "uses {curly} and [square] ]"}, {"id": 2, "reas'
    decoded = decode_ranking_response(text)
    assert isinstance(decoded, RepairedPartial)
    assert decoded.results == [{"id": 1, "reasoning": "uses {curly} and [square] ]"}]


def test_generic_document_is_closed() -> None:
    text = '{"analysis": "too many false positives", "recommendations": ["tighten HR'
    assert extract_json_response(text) == {
        "analysis": "too many false positives",
        "recommendations": ["tighten HR"],
    }


def test_dangling_key_gets_null() -> None:
    assert extract_json_response('{"summary": "ok", "detail":') == {"summary": "ok", "detail": None}


def test_double_encoded_document() -> None:
    assert extract_json_response(json.dumps(json.dumps({"summary": "ok"}))) == {"summary": "ok"}


def test_garbage_raises_with_snippet() -> None:
    with pytest.raises(JSONExtractionError) as info:
        extract_json_response("I cannot help with that request.")
    assert "cannot help" in info.value.snippet


def test_decode_reports_unparseable() -> None:
    decoded = decode_ranking_response("no json here")
    assert isinstance(decoded, Unparseable)
    assert decoded.raw_snippet == "no json here"


def test_decode_requires_results_array() -> None:
    decoded = decode_ranking_response('{"summary": "ok"}')
    assert isinstance(decoded, Unparseable)
    assert decoded.reason == "missing results array"

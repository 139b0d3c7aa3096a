"""Tests for the critique (gradient) and prompt-editor LLM steps."""

from __future__ import annotations

import asyncio
import json

from conftest import status_error
from personarank.optimize.editor import EDIT_FAILED_SUMMARY, generate_prompt_edits, parse_edit_response
from personarank.optimize.eval_set import EvalLead
from personarank.optimize.gradient import Gradient, build_gradient_prompt, generate_gradient
from personarank.optimize.metrics import Metrics, RankMismatch

JANE = EvalLead("j", "Jane Doe", "HR Manager", "Acme", "51-200", None)
ANN = EvalLead("a", "Ann Roe", "VP Sales", "Acme", "51-200", 1)

METRICS = Metrics(0.5, 0.25, 1 / 3, 0.6, 0.44, false_positives=[JANE], false_negatives=[ANN])

GRADIENT_REPLY = {
    "summary": "HR titles slip through",
    "falsePositiveAnalysis": "HR managers marked relevant",
    "falseNegativeAnalysis": "VP Sales missed",
    "rankingMismatchAnalysis": "ok",
    "suggestedImprovements": ["Exclude HR explicitly"],
    "confidenceLevel": "HIGH",
}


def test_gradient_prompt_shows_errors() -> None:
    prompt = build_gradient_prompt(
        "x" * 2500, METRICS, METRICS.false_positives, METRICS.false_negatives, [RankMismatch(ANN, 5, 1)]
    )
    assert "- Precision: 50.0%" in prompt
    assert "- F1 Score: 33.3%" in prompt
    assert "- Jane Doe | HR Manager | Acme (51-200)" in prompt
    assert "- Ann Roe | VP Sales | Acme (51-200) - Ground Truth Rank: 1" in prompt
    assert "Predicted #5, Actual #1" in prompt
    assert "...[truncated]" in prompt


def test_generate_gradient(make_client) -> None:
    client, transport = make_client(["<think>hmm</think>" + json.dumps(GRADIENT_REPLY)])
    gradient = asyncio.run(generate_gradient(client, "PROMPT", METRICS, []))
    assert gradient.summary == "HR titles slip through"
    assert gradient.suggested_improvements == ["Exclude HR explicitly"]
    assert gradient.confidence_level == "high"
    assert gradient.to_dict()["falsePositiveAnalysis"] == "HR managers marked relevant"
    assert transport.calls[0]["temperature"] == 0.3


def test_gradient_falls_back_on_failure(make_client) -> None:
    client, _ = make_client(["not json"])
    gradient = asyncio.run(generate_gradient(client, "PROMPT", METRICS, []))
    assert gradient.confidence_level == "low"
    assert gradient.summary.startswith("Gradient generation failed")

    client, _ = make_client([status_error(500)])
    assert asyncio.run(generate_gradient(client, "PROMPT", METRICS, [])).confidence_level == "low"


def test_parse_edit_response() -> None:
    result = parse_edit_response(
        {
            "newPrompt": "NEW",
            "edits": [
                {"editType": "add_rule", "targetSection": "Hard Exclusions", "proposedChange": "No HR"},
                {"editType": "rewrite_everything", "proposedChange": "x"},
                "junk",
            ],
            "changesSummary": "Tightened HR",
        }
    )
    assert result.new_prompt == "NEW"
    assert [e.edit_type for e in result.edits] == ["add_rule", "clarify_instruction"]
    assert result.edits[0].to_dict()["targetSection"] == "Hard Exclusions"
    assert not result.is_noop("OLD")
    assert result.is_noop("NEW")


def test_generate_prompt_edits(make_client) -> None:
    reply = {"newPrompt": "PROMPT + rule", "edits": [{"editType": "add_rule", "proposedChange": "rule"}]}
    client, transport = make_client([reply])
    gradient = Gradient.from_response(GRADIENT_REPLY)
    result = asyncio.run(generate_prompt_edits(client, "PROMPT", gradient))
    assert result.new_prompt == "PROMPT + rule"
    assert "1. Exclude HR explicitly" in transport.calls[0]["messages"][0]["content"]
    assert transport.calls[0]["temperature"] == 0.2


def test_edit_failure_keeps_prompt(make_client) -> None:
    client, _ = make_client([{"edits": []}])
    result = asyncio.run(generate_prompt_edits(client, "PROMPT", Gradient("s")))
    assert result.new_prompt == "PROMPT"
    assert result.edits == []
    assert result.changes_summary == EDIT_FAILED_SUMMARY
    assert result.is_noop("PROMPT")

"""
Prompt editor: applies a gradient to the instruction document.

The LLM is asked for surgical edits only (at most a handful per
iteration, structure and JSON output contract preserved) and must answer
with the full new document, the list of discrete edits and a change
summary.  On failure the current document is returned unchanged with no
edits, which the optimization loop treats as a no-op iteration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..constants import EDITOR_TEMPERATURE
from ..errors import PersonaRankError
from ..rank.llm_providers import CompletionClient, CredentialContext
from ..rank.repair import extract_json_response
from .gradient import Gradient

logger = logging.getLogger(__name__)

EDIT_TYPES = ("add_rule", "modify_rule", "remove_rule", "add_example", "clarify_instruction")
EDIT_FAILED_SUMMARY = "Edit generation failed - prompt unchanged"

EDITOR_PROMPT = """# Prompt Editor: Apply Gradient to Improve Prompt

You are an expert prompt engineer. Based on the error analysis ("gradient"), apply targeted edits to improve the prompt.

## Current Prompt
```
{prompt}
```

## Error Analysis (Gradient)
{summary}

### False Positive Issues
{false_positive}

### False Negative Issues
{false_negative}

### Ranking Issues
{ranking}

### Suggested Improvements
{improvements}

## Your Task
Edit the prompt to address these issues. Make surgical, targeted changes - don't rewrite everything.

Return a JSON object:
{{
  "newPrompt": "The complete updated prompt with all edits applied",
  "edits": [
    {{
      "editType": "add_rule|modify_rule|remove_rule|add_example|clarify_instruction",
      "targetSection": "Which section was edited (e.g., 'Scoring Rules', 'Hard Exclusions')",
      "originalText": "The original text that was changed (if applicable)",
      "proposedChange": "The new/modified text",
      "rationale": "Why this change addresses the gradient"
    }}
  ],
  "changesSummary": "One paragraph summary of all changes made"
}}

Guidelines:
1. Preserve the overall structure and format, including the "## Company Context" and "## Candidates to Rank" sections
2. Keep JSON output format instructions unchanged
3. Make at most 3-5 targeted edits per iteration
4. Each edit should address a specific issue from the gradient
5. Be conservative - small changes that improve specific failure modes

Return ONLY JSON. No markdown."""


@dataclass
class PromptEdit:
    edit_type: str
    target_section: str
    proposed_change: str
    rationale: str = ""
    original_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "editType": self.edit_type,
            "targetSection": self.target_section,
            "originalText": self.original_text,
            "proposedChange": self.proposed_change,
            "rationale": self.rationale,
        }


@dataclass
class EditResult:
    new_prompt: str
    edits: List[PromptEdit] = field(default_factory=list)
    changes_summary: str = ""

    def is_noop(self, current_prompt: str) -> bool:
        return not self.edits or self.new_prompt == current_prompt


def _parse_edit(raw: Any) -> Optional[PromptEdit]:
    if not isinstance(raw, dict):
        return None
    edit_type = str(raw.get("editType") or "")
    if edit_type not in EDIT_TYPES:
        edit_type = "clarify_instruction"
    original = raw.get("originalText")
    return PromptEdit(
        edit_type=edit_type,
        target_section=str(raw.get("targetSection") or ""),
        proposed_change=str(raw.get("proposedChange") or ""),
        rationale=str(raw.get("rationale") or ""),
        original_text=str(original) if original else None,
    )


def parse_edit_response(data: Any) -> EditResult:
    if not isinstance(data, dict):
        raise ValueError("Edit response is not an object")
    new_prompt = data.get("newPrompt")
    if not isinstance(new_prompt, str) or not new_prompt.strip():
        raise ValueError("Edit response has no newPrompt")
    raw_edits = data.get("edits") if isinstance(data.get("edits"), list) else []
    edits = [edit for edit in (_parse_edit(raw) for raw in raw_edits) if edit is not None]
    return EditResult(new_prompt, edits, str(data.get("changesSummary") or ""))


def build_editor_prompt(current_prompt: str, gradient: Gradient) -> str:
    improvements = "\n".join(f"{i}. {item}" for i, item in enumerate(gradient.suggested_improvements, start=1))
    return EDITOR_PROMPT.format(
        prompt=current_prompt,
        summary=gradient.summary,
        false_positive=gradient.false_positive_analysis,
        false_negative=gradient.false_negative_analysis,
        ranking=gradient.ranking_mismatch_analysis,
        improvements=improvements or "None",
    )


async def generate_prompt_edits(
    client: CompletionClient,
    current_prompt: str,
    gradient: Gradient,
    model: Optional[str] = None,
    credentials: Optional[CredentialContext] = None,
) -> EditResult:
    """Rewrite ``current_prompt`` guided by ``gradient``."""
    try:
        completion = await client.complete(
            [{"role": "user", "content": build_editor_prompt(current_prompt, gradient)}],
            model=model,
            temperature=EDITOR_TEMPERATURE,
            credentials=credentials,
            call_type="optimization_edit",
        )
        return parse_edit_response(extract_json_response(completion.text))
    except (PersonaRankError, ValueError) as exc:
        logger.warning("Prompt edit generation failed, keeping prompt: %s", str(exc)[:200])
        return EditResult(current_prompt, [], EDIT_FAILED_SUMMARY)

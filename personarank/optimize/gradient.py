"""
Natural-language "gradients".

After each evaluation the optimizer shows the LLM the current prompt,
its metrics and a sample of its mistakes, and asks for a structured
critique: what causes the false positives, the false negatives and the
rank-order errors, and what to change.  The critique is the gradient
that the prompt editor then applies.

If the call or the JSON extraction fails, a fixed low-confidence
critique is returned so the optimization iteration still completes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..constants import ERROR_SAMPLE_SIZE, GRADIENT_TEMPERATURE, PROMPT_PREVIEW_CHARS
from ..errors import PersonaRankError
from ..rank.llm_providers import CompletionClient, CredentialContext
from ..rank.repair import extract_json_response
from .eval_set import EvalLead
from .metrics import Metrics, RankMismatch

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = ("low", "medium", "high")
UNABLE_TO_ANALYZE = "Unable to analyze - gradient generation error"

GRADIENT_PROMPT = """# Prompt Optimization: Error Analysis

You are an expert prompt engineer analyzing errors in a lead qualification prompt. Your goal is to identify patterns in the failures and suggest specific improvements.

## Current Prompt Performance
- Precision: {precision:.1f}%
- Recall: {recall:.1f}%
- F1 Score: {f1:.1f}%
- NDCG@3: {ndcg:.1f}%
- Composite: {composite:.1f}%

## Current Prompt (Truncated for Context)
```
{prompt}
```

## False Positives (Predicted Relevant, Actually Irrelevant)
These leads were incorrectly marked as relevant:
{false_positives}

## False Negatives (Predicted Irrelevant, Actually Relevant)
These leads were incorrectly marked as irrelevant:
{false_negatives}

## Ranking Mismatches (Rank order incorrect)
These leads had significant rank differences:
{mismatches}

## Your Task
Analyze the patterns in these errors and provide a structured critique ("gradient") that can guide prompt improvements.

Return a JSON object:
{{
  "summary": "One paragraph summarizing the key issues with the current prompt",
  "falsePositiveAnalysis": "What patterns cause false positives? What rules are too loose?",
  "falseNegativeAnalysis": "What patterns cause false negatives? What rules are too strict?",
  "rankingMismatchAnalysis": "Why is the ranking order wrong? What priority rules are misapplied?",
  "suggestedImprovements": [
    "Specific, actionable improvement 1",
    "Specific, actionable improvement 2"
  ],
  "confidenceLevel": "low|medium|high"
}}

Focus on:
1. Company size matching (startup vs enterprise rules)
2. Title/role interpretation
3. Department fit assessment
4. Seniority level appropriateness

Return ONLY JSON. No markdown."""


@dataclass
class Gradient:
    summary: str
    false_positive_analysis: str = ""
    false_negative_analysis: str = ""
    ranking_mismatch_analysis: str = ""
    suggested_improvements: List[str] = field(default_factory=list)
    confidence_level: str = "low"

    @classmethod
    def from_response(cls, data: Any) -> "Gradient":
        if not isinstance(data, dict) or not data.get("summary"):
            raise ValueError("Gradient response has no summary")
        improvements = data.get("suggestedImprovements") or []
        if not isinstance(improvements, list):
            improvements = [str(improvements)]
        confidence = str(data.get("confidenceLevel", "low")).lower()
        return cls(
            summary=str(data["summary"]),
            false_positive_analysis=str(data.get("falsePositiveAnalysis") or ""),
            false_negative_analysis=str(data.get("falseNegativeAnalysis") or ""),
            ranking_mismatch_analysis=str(data.get("rankingMismatchAnalysis") or ""),
            suggested_improvements=[str(item) for item in improvements],
            confidence_level=confidence if confidence in CONFIDENCE_LEVELS else "low",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "falsePositiveAnalysis": self.false_positive_analysis,
            "falseNegativeAnalysis": self.false_negative_analysis,
            "rankingMismatchAnalysis": self.ranking_mismatch_analysis,
            "suggestedImprovements": list(self.suggested_improvements),
            "confidenceLevel": self.confidence_level,
        }


def fallback_gradient() -> Gradient:
    return Gradient(
        summary="Gradient generation failed. Manual review recommended.",
        false_positive_analysis=UNABLE_TO_ANALYZE,
        false_negative_analysis=UNABLE_TO_ANALYZE,
        ranking_mismatch_analysis=UNABLE_TO_ANALYZE,
        suggested_improvements=["Review false positives manually", "Review false negatives manually"],
        confidence_level="low",
    )


def _truncate_prompt(prompt: str, limit: int = PROMPT_PREVIEW_CHARS) -> str:
    if len(prompt) <= limit:
        return prompt
    return prompt[:limit] + "\n...[truncated]"


def _lead_lines(leads: Sequence[EvalLead], with_rank: bool = False) -> str:
    if not leads:
        return "None"
    lines = []
    for lead in leads:
        line = f"- {lead.full_name} | {lead.title} | {lead.company} ({lead.employee_range})"
        if with_rank:
            line += f" - Ground Truth Rank: {lead.ground_truth_rank}"
        lines.append(line)
    return "\n".join(lines)


def _mismatch_lines(mismatches: Sequence[RankMismatch]) -> str:
    if not mismatches:
        return "None"
    return "\n".join(
        f"- {m.lead.full_name} | {m.lead.title} | {m.lead.company}: Predicted #{m.predicted_rank}, Actual #{m.actual_rank}"
        for m in mismatches
    )


def build_gradient_prompt(
    current_prompt: str,
    metrics: Metrics,
    false_positives: Sequence[EvalLead],
    false_negatives: Sequence[EvalLead],
    mismatches: Sequence[RankMismatch],
    sample_size: int = ERROR_SAMPLE_SIZE,
) -> str:
    return GRADIENT_PROMPT.format(
        precision=metrics.precision * 100,
        recall=metrics.recall * 100,
        f1=metrics.f1 * 100,
        ndcg=metrics.ndcg_at_3 * 100,
        composite=metrics.composite * 100,
        prompt=_truncate_prompt(current_prompt),
        false_positives=_lead_lines(list(false_positives)[:sample_size]),
        false_negatives=_lead_lines(list(false_negatives)[:sample_size], with_rank=True),
        mismatches=_mismatch_lines(list(mismatches)[:sample_size]),
    )


async def generate_gradient(
    client: CompletionClient,
    current_prompt: str,
    metrics: Metrics,
    mismatches: Sequence[RankMismatch],
    model: Optional[str] = None,
    credentials: Optional[CredentialContext] = None,
) -> Gradient:
    """Ask the LLM to critique the errors behind ``metrics``."""
    prompt = build_gradient_prompt(current_prompt, metrics, metrics.false_positives, metrics.false_negatives, mismatches)
    try:
        completion = await client.complete(
            [{"role": "user", "content": prompt}],
            model=model,
            temperature=GRADIENT_TEMPERATURE,
            credentials=credentials,
            call_type="optimization_gradient",
        )
        return Gradient.from_response(extract_json_response(completion.text))
    except (PersonaRankError, ValueError) as exc:
        logger.warning("Gradient generation failed, using fallback critique: %s", str(exc)[:200])
        return fallback_gradient()

"""
Ranking prompt builder.

Candidates are shown to the model with short sequential IDs (1, 2, 3...)
instead of their real identifiers: models copy small integers reliably
and routinely mangle long UUIDs.  Every builder therefore returns the
prompt together with the :class:`ShortIdMap` needed to translate the
answer back.

Two rendering paths exist:

* :func:`build_ranking_prompt` renders the full default instruction
  document for one company and batch.
* :func:`splice_into_document` takes an evolving instruction document
  (a prompt version produced by the optimizer) and replaces only its
  ``## Company Context`` and ``## Candidates to Rank`` sections, leaving
  the persona rubric written by the optimizer untouched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from ..normalize.schema import Candidate, Company, ShortIdMap

logger = logging.getLogger(__name__)

COMPANY_CONTEXT_HEADER = "## Company Context"
CANDIDATES_HEADER = "## Candidates to Rank"

SIZE_RULES: Dict[str, str] = {
    "startup": """### Startup (1-50 employees)
At early-stage companies, founders are operationally involved in sales and make fast purchasing decisions.

**Primary Targets (Rank 1-5):**
1. Founder / Co-Founder (Priority 5/5)
2. CEO / President (Priority 5/5)
3. Owner / Co-Owner (Priority 5/5)
4. Managing Director (Priority 4/5)
5. Head of Sales (Priority 4/5)

**Buying trigger:** "I don't have time to do outbound myself anymore."

**Note:** Founders and CEOs are the decision makers here.""",
    "smb": """### SMB (51-200 employees)
Sales leadership exists but lacks resources to build sophisticated outbound infrastructure.

**Primary Targets (Rank 1-7):**
1. VP of Sales (Priority 5/5)
2. Head of Sales (Priority 5/5)
3. Sales Director (Priority 5/5)
4. Director of Sales Development (Priority 5/5)
5. CRO (Chief Revenue Officer) (Priority 4/5)
6. Head of Revenue Operations (Priority 4/5)
7. VP of Growth (Priority 4/5)

**Buying trigger:** "My team can't keep up with our growth goals.\"""",
    "mid_market": """### Mid-Market (201-1,000 employees)
Established sales organizations struggling with pipeline quality and BDR productivity. Multiple stakeholders involved in decisions.

**Primary Targets (Rank 1-7):**
1. VP of Sales Development (Priority 5/5)
2. VP of Sales (Priority 5/5)
3. Head of Sales Development (Priority 5/5)
4. Director of Sales Development (Priority 5/5)
5. CRO (Chief Revenue Officer) (Priority 4/5)
6. VP of Revenue Operations (Priority 4/5)
7. VP of GTM (Priority 4/5)

**Champions (for multi-threading):** Sales Managers, BDR Managers, RevOps Managers

**Buying trigger:** "We need to improve outbound efficiency and pipeline predictability.\"""",
    "enterprise": """### Enterprise (1,000+ employees)
Complex buying processes. CEOs are too far removed, so target VP and Director level leaders who own the function.

**Primary Targets (Rank 1-7):**
1. VP of Sales Development (Priority 5/5)
2. VP of Inside Sales (Priority 5/5)
3. Head of Sales Development (Priority 5/5)
4. CRO (Chief Revenue Officer) (Priority 4/5)
5. VP of Revenue Operations (Priority 4/5)
6. Director of Sales Development (Priority 4/5)
7. VP of Field Sales (Priority 4/5)

**Champions (essential):** BDR Managers, Directors of Sales Operations, RevOps Managers

**Buying trigger:** "We need to hit aggressive growth targets with better outbound execution.\"""",
}

_BODY = """## Who NOT to Contact

### Hard Exclusions (ALWAYS mark irrelevant, score 0)
| Role | Reason |
|------|--------|
| CEO / President (Mid-Market & Enterprise) | Too far removed from outbound execution |
| CFO / Finance | Wrong department (unless Startup Finance Head) |
| HR / Legal / Compliance | Administrative function |
| Customer Success / Support | Post-sale focus |
| Board / Investors | Non-operational |
| Interns / Students | No purchasing power |

### Soft Exclusions (Deprioritize or Mark Irrelevant)
| Role | Context |
|------|---------|
| CTO / Engineering | Irrelevant (unless explicitly "GTM Systems" or at <50 employees) |
| Product Management | Internal product focus |
| Marketing | Focuses on inbound/brand, rarely buys outbound tools |
| BDRs / SDRs | End users; usually not decision makers |
| Account Executives | Focused on closing, not infrastructure |

## Qualification Signals (Context for Scoring)
**Note: Only use these signals if explicitly present in the company intel or input. Otherwise ignore.**

### Positive Signals (Increase Score)
- Recently raised funding (Budget available)
- Actively hiring SDRs/BDRs (Investing in outbound)
- Sells into enterprise or mid-market buyers
- Long sales cycles (3+ months)
- Lead was recently promoted
- Company posting about "pipeline problems" or "scaling sales"
- Small or no existing SDR team
- Previous company used outsourced outbound

### Negative Signals (Decrease Score)
- Sells to SMB or consumers (B2C)
- Product-led growth (PLG) company
- Large, established SDR team (20+)
- Company in layoffs or cost-cutting mode
- No online presence or outdated website

## Role Classifications
- **decision_maker**: Can approve purchase of sales tools (primary target)
- **champion**: Can advocate internally, useful for multi-threading (secondary)
- **irrelevant**: Wrong department, seniority, or role for this company size

## Output Format

Return a JSON object with a "results" array. Include exactly one object per provided candidate. Do not omit any candidates.

{
  "results": [
    {
      "id": 1,
      "is_relevant": true,
      "role_type": "decision_maker",
      "rank_within_company": 1,
      "score": 92,
      "rubric": {
        "department_fit": 5,
        "seniority_fit": 4,
        "size_fit": 5
      },
      "reasoning": "VP Sales at SMB - primary decision maker for sales tools",
      "flags": []
    }
  ]
}

**Important:**
- Set rank_within_company to 1, 2, 3... for relevant leads (1 = best)
- Set rank_within_company to null for irrelevant leads
- Score 0-100 is for tiebreaking (90-100 = perfect fit, 0 = irrelevant)
- Return one object per candidate, including irrelevant ones

Return ONLY the JSON object, no markdown, no explanation."""


@dataclass
class PromptResult:
    prompt: str
    id_map: ShortIdMap


def size_rules(size_bucket: Optional[str]) -> str:
    """Return the priority-role rubric for a bucket (SMB when unknown)."""
    return SIZE_RULES.get(size_bucket or "", SIZE_RULES["smb"])


def _bucket_label(size_bucket: Optional[str], default: str) -> str:
    return size_bucket.upper() if size_bucket else default


def render_company_context(company: Company, context_summary: Optional[str] = None) -> str:
    lines = [
        COMPANY_CONTEXT_HEADER,
        f"- **Company:** {company.name}",
        f"- **Size:** {_bucket_label(company.size_bucket, 'UNKNOWN')} ({company.employee_range})",
        f"- **Industry:** {company.industry or 'Unknown'}",
    ]
    summary = context_summary if context_summary is not None else company.context_summary
    if summary:
        lines.append(f"- **Company Intel:** {summary}")
    return "\n".join(lines)


def render_candidates(candidates: Sequence[Candidate]) -> str:
    rows = [f"{i}. ID: {i} | {c.full_name} | {c.title}" for i, c in enumerate(candidates, start=1)]
    return "\n".join([CANDIDATES_HEADER] + rows)


def build_ranking_prompt(
    company: Company,
    candidates: Sequence[Candidate],
    context_summary: Optional[str] = None,
) -> PromptResult:
    """Render the default ranking instruction document for one batch."""
    id_map = ShortIdMap([c.id for c in candidates])
    prompt = "\n\n".join(
        [
            "# Lead Qualification for B2B Sales Outbound",
            "You are scoring leads for an agency that books meetings for B2B sales teams "
            "selling into traditional industries (manufacturing, healthcare, education).",
            render_company_context(company, context_summary),
            render_candidates(candidates),
            f"## Scoring Rules for {_bucket_label(company.size_bucket, 'THIS')} Companies",
            size_rules(company.size_bucket),
            _BODY,
        ]
    )
    return PromptResult(prompt, id_map)


def default_instruction_document() -> str:
    """The instruction document installed by a reset, rendered for a placeholder SMB company."""
    placeholder = Company(id="placeholder", name="PLACEHOLDER", employee_range="51-200", size_bucket="smb")
    sample = [Candidate(id="sample", full_name="Test User", title="VP Sales")]
    return build_ranking_prompt(placeholder, sample).prompt


def _section_pattern(header: str) -> "re.Pattern[str]":
    return re.compile(re.escape(header) + r"[\s\S]*?(?=\n## |\Z)")


def splice_into_document(
    document: str,
    company: Company,
    candidates: Sequence[Candidate],
) -> PromptResult:
    """Replace the company and candidate sections of ``document``.

    Falls back to :func:`build_ranking_prompt` when the document no
    longer carries the section headers (e.g. an edit dropped them).
    """
    id_map = ShortIdMap([c.id for c in candidates])
    context = render_company_context(company) + "\n"
    roster = render_candidates(candidates) + "\n"

    spliced, n_context = _section_pattern(COMPANY_CONTEXT_HEADER).subn(lambda _m: context, document, count=1)
    spliced, n_roster = _section_pattern(CANDIDATES_HEADER).subn(lambda _m: roster, spliced, count=1)
    if n_roster == 0:
        logger.warning("Instruction document has no candidate section; using the default template")
        return build_ranking_prompt(company, candidates)
    if n_context == 0:
        logger.debug("Instruction document has no company context section for %s", company.name)
    return PromptResult(spliced, id_map)

"""
Ranking subsystem.

* `rules` / `prefilter` – Deterministic gate that excludes
  out-of-persona titles before any LLM call.
* `prompt` – Renders the ranking instructions with short candidate IDs.
* `llm_providers` – Chat completion with cross-model fallback.
* `repair` – Recovers JSON from decorated or truncated model output.
* `mapper` – Maps short-ID output back onto real candidates.
* `orchestrator` – Drives the above for one company and assigns ranks.
"""

from .orchestrator import RankingOrchestrator, RankingOutcome, finalize_ranks, provisional_rank  # noqa: F401
from .prefilter import PrefilterResult, prefilter_lead  # noqa: F401
from .prompt import build_ranking_prompt, splice_into_document  # noqa: F401
from .repair import decode_ranking_response, extract_json_response  # noqa: F401

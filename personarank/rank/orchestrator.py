"""
Per-company ranking pipeline.

For one company the orchestrator:

1. runs every candidate through the prefilter gate and records gate
   exclusions immediately (irrelevant, score 0, reasoning quoting the
   rule);
2. chunks the survivors into fixed-size batches and, batch by batch,
   renders the prompt, calls the LLM (bounded attempts with exponential
   backoff), decodes and validates the answer and maps it back onto the
   candidates;
3. persists each batch as soon as it is mapped, followed by a
   provisional ranking so partial progress is visible;
4. finalizes ranks across the whole company once all batches are done.

Provider exhaustion on a batch stops the remaining batches but keeps
everything already ranked; the outcome is flagged as a partial
completion instead of an error.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..config import Settings
from ..errors import ProviderCallError, ProvidersExhaustedError, ResponseValidationError
from ..normalize.schema import Candidate, Company, RankingResult
from ..store import RecordStore
from .llm_providers import CompletionClient, CredentialContext
from .mapper import NOT_PROCESSED_FLAG, clamp_score, map_results, not_processed
from .prefilter import partition_candidates
from .prompt import PromptResult, build_ranking_prompt, splice_into_document
from .repair import Unparseable, RepairedPartial, decode_ranking_response

logger = logging.getLogger(__name__)

SKIPPED_REASONING = "Not processed: ranking halted before this batch"

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RankingOutcome:
    """Results for one company plus partial-completion bookkeeping."""

    results: List[RankingResult]
    partial_completion: bool = False
    skipped_leads_count: int = 0
    rate_limit_error: Optional[str] = None
    ranked_leads_count: int = 0
    provider_error: Optional[ProvidersExhaustedError] = None

    @property
    def relevant_count(self) -> int:
        return sum(1 for r in self.results if r.is_relevant)


def validate_items(results: Any) -> List[Dict[str, Any]]:
    """Structural checks on decoded ``results`` items.

    Every item must be an object with a numeric or string ``id``; the
    score is clamped into [0, 100] rather than rejected.
    """
    if not isinstance(results, list):
        raise ResponseValidationError("Invalid structure: 'results' array missing")
    validated: List[Dict[str, Any]] = []
    for item in results:
        if not isinstance(item, dict):
            raise ResponseValidationError(f"Invalid result item: {item!r}"[:200])
        raw_id = item.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, (int, float, str)):
            raise ResponseValidationError(f"Invalid result ID: {raw_id!r}")
        validated.append(dict(item, score=clamp_score(item.get("score"))))
    return validated


def _by_score(results: Sequence[RankingResult]) -> List[RankingResult]:
    # sorted() is stable, so equal scores keep input order
    return sorted((r for r in results if r.is_relevant), key=lambda r: r.score, reverse=True)


def provisional_rank(results: Sequence[RankingResult]) -> Dict[str, int]:
    """Best-effort ranks over the results seen so far; superseded by :func:`finalize_ranks`."""
    return {r.lead_id: i for i, r in enumerate(_by_score(results), start=1)}


def finalize_ranks(results: Sequence[RankingResult]) -> List[RankingResult]:
    """Assign authoritative ranks 1..N to relevant results by descending score.

    Irrelevant results get ``None``.  Mutates and returns ``results``.
    """
    ranks = {r.lead_id: i for i, r in enumerate(_by_score(results), start=1)}
    for result in results:
        result.rank_within_company = ranks.get(result.lead_id)
    return list(results)


def _chunks(items: Sequence[Candidate], size: int) -> List[List[Candidate]]:
    size = max(1, size)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class RankingOrchestrator:
    """Drive gate -> batch -> call -> map -> rank for one company at a time."""

    def __init__(
        self,
        client: CompletionClient,
        store: Optional[RecordStore] = None,
        settings: Optional[Settings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings or client.settings
        self.sleep = sleep

    async def rank(
        self,
        company: Company,
        candidates: Sequence[Candidate],
        instruction_document: Optional[str] = None,
        **kwargs: Any,
    ) -> List[RankingResult]:
        """Rank ``candidates``; returns exactly one result per candidate."""
        outcome = await self.rank_company(company, candidates, instruction_document, **kwargs)
        return outcome.results

    async def rank_company(
        self,
        company: Company,
        candidates: Sequence[Candidate],
        instruction_document: Optional[str] = None,
        *,
        model: Optional[str] = None,
        credentials: Optional[CredentialContext] = None,
        job_id: Optional[str] = None,
    ) -> RankingOutcome:
        passed, excluded = partition_candidates(candidates, company.size_bucket)
        by_id: Dict[str, RankingResult] = {}

        gate_results = []
        for candidate, verdict in excluded:
            result = RankingResult(
                lead_id=candidate.id,
                reasoning=f"Excluded: {verdict.reason}",
                flags=[verdict.code] if verdict.code else [],
                excluded_by_gate=True,
                exclusion_reason=verdict.reason,
            )
            by_id[candidate.id] = result
            gate_results.append(result)
        await self._persist(company, candidates, gate_results)

        outcome = RankingOutcome(results=[])
        ranked: List[RankingResult] = []
        batches = _chunks(passed, self.settings.batch_size)
        logger.info(
            "Ranking %d leads for %s (%d gated, %d batches, model %s)",
            len(candidates),
            company.name,
            len(excluded),
            len(batches),
            model or self.settings.model,
        )

        for index, batch in enumerate(batches):
            if outcome.rate_limit_error is not None:
                self._skip(batch, by_id, outcome)
                continue
            prompt = self._render(company, batch, instruction_document)
            try:
                batch_results = await self._rank_batch(
                    prompt, model=model, credentials=credentials, metadata={"job_id": job_id, "company_id": company.id}
                )
            except ProvidersExhaustedError as exc:
                logger.warning("Providers exhausted on batch %d for %s: %s", index + 1, company.name, exc.message)
                outcome.rate_limit_error = exc.message
                outcome.provider_error = exc
                self._skip(batch, by_id, outcome)
                continue
            except (ProviderCallError, ResponseValidationError) as exc:
                logger.error("Batch %d for %s failed after retries: %s", index + 1, company.name, exc)
                self._skip(batch, by_id, outcome, reasoning=f"Not processed: {str(exc)[:200]}")
                continue

            for result in batch_results:
                by_id[result.lead_id] = result
            ranked.extend(batch_results)
            outcome.ranked_leads_count += len(batch_results)
            await self._persist(company, batch, batch_results)
            await self._persist_ranks(provisional_rank(ranked))

        final = finalize_ranks([by_id[c.id] for c in candidates if c.id in by_id])
        await self._persist_ranks({r.lead_id: r.rank_within_company for r in final if NOT_PROCESSED_FLAG not in r.flags})
        outcome.results = [by_id[c.id] for c in candidates]
        logger.info(
            "Ranked %s: %d relevant, %d skipped%s",
            company.name,
            outcome.relevant_count,
            outcome.skipped_leads_count,
            " (partial)" if outcome.partial_completion else "",
        )
        return outcome

    def _render(self, company: Company, batch: Sequence[Candidate], document: Optional[str]) -> PromptResult:
        if document:
            return splice_into_document(document, company, batch)
        return build_ranking_prompt(company, batch)

    def _skip(
        self,
        batch: Sequence[Candidate],
        by_id: Dict[str, RankingResult],
        outcome: RankingOutcome,
        reasoning: str = SKIPPED_REASONING,
    ) -> None:
        for candidate in batch:
            by_id[candidate.id] = not_processed(candidate.id, reasoning)
        outcome.partial_completion = True
        outcome.skipped_leads_count += len(batch)

    async def _rank_batch(
        self,
        prompt: PromptResult,
        *,
        model: Optional[str],
        credentials: Optional[CredentialContext],
        metadata: Dict[str, Any],
    ) -> List[RankingResult]:
        attempts = max(1, self.settings.max_batch_attempts)
        for attempt in range(1, attempts + 1):
            try:
                completion = await self.client.complete(
                    [{"role": "user", "content": prompt.prompt}],
                    model=model,
                    temperature=0.0,
                    credentials=credentials,
                    call_type="ranking_batch",
                    metadata=metadata,
                )
                decoded = decode_ranking_response(completion.text)
                if isinstance(decoded, Unparseable):
                    raise ResponseValidationError(f"{decoded.reason}: {decoded.raw_snippet[:100]}")
                if isinstance(decoded, RepairedPartial) and decoded.dropped_count:
                    logger.warning("Truncated model output: dropped %d incomplete item(s)", decoded.dropped_count)
                return map_results(validate_items(decoded.results), prompt.id_map)
            except ProvidersExhaustedError:
                raise
            except (ProviderCallError, ResponseValidationError) as exc:
                logger.warning("Batch attempt %d/%d failed: %s", attempt, attempts, str(exc)[:100])
                if attempt == attempts:
                    raise
                await self.sleep(self.settings.retry_delay_base * 2 ** (attempt - 1))
        raise AssertionError("unreachable")

    async def _persist(self, company: Company, candidates: Sequence[Candidate], results: Sequence[RankingResult]) -> None:
        if self.store is None or not results:
            return
        meta = {c.id: c for c in candidates}
        for result in results:
            candidate = meta.get(result.lead_id)
            fields = result.to_record()
            fields.update(id=result.lead_id, company_id=company.id)
            if candidate is not None:
                fields.update(full_name=candidate.full_name, title=candidate.title, title_normalized=candidate.normalized_title)
            await self.store.save_lead_result(result.lead_id, fields)

    async def _persist_ranks(self, ranks: Dict[str, Optional[int]]) -> None:
        if self.store is None:
            return
        for lead_id, rank in ranks.items():
            await self.store.upsert("leads", lead_id, {"rank_within_company": rank})

"""
Task entry points.

These functions are what a job runner (or the CLI) invokes.  They load
their inputs from the record store, run the ranking or optimization
engine and keep the owning job/run record up to date:

* :func:`rank_company_task` ranks one company of a ranking job and
  advances the job's progress counters.  Provider exhaustion is a
  partial completion; any other error marks the job failed and is
  re-raised so the runner's retry policy can apply.
* :func:`optimize_prompt_task` runs the optimization loop for one run
  record.  Failures mark the run failed with a classified error and are
  re-raised; the loop itself is never retried here.
* :func:`reset_prompt` and :func:`get_current_prompt` manage the prompt
  versions of an optimization scope.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .config import Settings
from .errors import PersonaRankError, classify_failure, truncate_error
from .normalize.schema import Candidate, Company
from .normalize.title import normalize_title
from .optimize.eval_set import load_eval_set
from .optimize.loop import PromptOptimizer, PromptVersion
from .rank.llm_providers import Completion, CompletionClient, CredentialContext
from .rank.orchestrator import RankingOrchestrator
from .rank.prompt import default_instruction_document
from .store import RecordStore, new_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"
RESET_SUMMARY = "Reset to default template"
RESET_RUN_ERROR = "Reset by user (Force Stop)"


@dataclass
class RankCompanyPayload:
    job_id: str
    company_id: str
    model: Optional[str] = None
    session_keys: Dict[str, str] = field(default_factory=dict)
    scope: Optional[str] = None  # use this scope's active prompt instead of the default template


@dataclass
class OptimizePromptPayload:
    run_id: str
    eval_set_path: str
    scope: str = DEFAULT_SCOPE
    max_iterations: Optional[int] = None
    model: Optional[str] = None
    session_keys: Dict[str, str] = field(default_factory=dict)


def call_recorder(store: RecordStore, **context: Any):
    """Completion hook that writes one ``ai_calls`` row per successful call."""

    async def record(call_type: str, completion: Completion, metadata: Mapping[str, object]) -> None:
        fields: Dict[str, Any] = dict(context)
        fields.update({k: v for k, v in metadata.items() if v is not None})
        fields.update(
            call_type=call_type,
            model=completion.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            estimated_cost_usd=completion.cost,
        )
        await store.record_ai_call(fields)

    return record


async def credentials_for(store: RecordStore, settings: Settings, session_keys: Optional[Mapping[str, str]] = None) -> CredentialContext:
    return CredentialContext(
        session_keys=dict(session_keys or {}),
        stored_keys=await store.stored_api_keys(),
        env_keys=settings.env_keys(),
    )


def _company_from_record(record: Dict[str, Any]) -> Company:
    return Company(
        id=record["id"],
        name=record.get("name", ""),
        employee_range=record.get("employee_range") or "",
        size_bucket=record.get("size_bucket"),
        domain=record.get("domain"),
        industry=record.get("industry"),
        context_summary=record.get("context_summary"),
    )


def _candidate_from_record(record: Dict[str, Any]) -> Candidate:
    title = record.get("title") or ""
    return Candidate(
        id=record["id"],
        full_name=record.get("full_name") or "",
        title=title,
        normalized_title=record.get("title_normalized") or normalize_title(title),
        company_id=record.get("company_id", ""),
    )


async def rank_company_task(
    payload: RankCompanyPayload,
    store: RecordStore,
    settings: Optional[Settings] = None,
    client: Optional[CompletionClient] = None,
) -> Dict[str, Any]:
    """Rank one company of a job; a client created here is closed before returning."""
    settings = settings or Settings()
    if client is not None:
        return await _rank_company(payload, store, settings, client)
    client = CompletionClient(settings=settings)
    try:
        return await _rank_company(payload, store, settings, client)
    finally:
        await client.aclose()


async def _rank_company(
    payload: RankCompanyPayload, store: RecordStore, settings: Settings, client: CompletionClient
) -> Dict[str, Any]:
    if client.on_call is None:
        client.on_call = call_recorder(store, job_id=payload.job_id)

    job = await store.require("jobs", payload.job_id)
    if job.get("status") == "pending":
        await store.update_job(payload.job_id, status="running", started_at=utcnow())

    try:
        company = _company_from_record(await store.require("companies", payload.company_id))
        candidates = [_candidate_from_record(r) for r in await store.leads_for_company(payload.company_id)]
        if not candidates:
            raise PersonaRankError(f"No leads for company {payload.company_id}")

        document = None
        if payload.scope:
            active = await store.active_prompt_version(payload.scope)
            document = active["prompt_text"] if active else None

        orchestrator = RankingOrchestrator(client, store=store, settings=settings)
        outcome = await orchestrator.rank_company(
            company,
            candidates,
            document,
            model=payload.model or settings.model,
            credentials=await credentials_for(store, settings, payload.session_keys),
            job_id=payload.job_id,
        )

        await store.increment(
            "jobs",
            payload.job_id,
            processed_companies=1,
            processed_leads=len(candidates) - outcome.skipped_leads_count,
            skipped_leads_count=outcome.skipped_leads_count,
        )
        if outcome.partial_completion:
            await store.update_job(payload.job_id, partial_completion=True, rate_limit_error=outcome.rate_limit_error)
        job = await store.require("jobs", payload.job_id)
        if job["processed_companies"] >= job["total_companies"]:
            logger.info("All %d companies processed; job %s completed", job["total_companies"], payload.job_id)
            await store.update_job(payload.job_id, status="completed", completed_at=utcnow())
    except Exception as exc:  # noqa: BLE001
        logger.exception("rank-company failed for %s", payload.company_id)
        await store.update_job(payload.job_id, status="failed", error_message=truncate_error(str(exc)))
        raise

    return {
        "status": "partial" if outcome.partial_completion else "success",
        "company_id": company.id,
        "leads_ranked": len(candidates) - outcome.skipped_leads_count,
        "relevant": outcome.relevant_count,
        "skipped": outcome.skipped_leads_count,
    }


async def ensure_prompt_version(store: RecordStore, scope: str) -> PromptVersion:
    """Active version of ``scope``, else its latest, else a new default v1."""
    record = await store.active_prompt_version(scope) or await store.latest_prompt_version(scope)
    if record is None:
        logger.info("No prompt versions in scope %s; creating v1 from the default template", scope)
        record = await store.insert_prompt_version(scope, 1, default_instruction_document(), is_active=True)
    return PromptVersion.from_record(record)


async def create_optimization_run(store: RecordStore, scope: str, max_iterations: int) -> Dict[str, Any]:
    run_id = new_id()
    return await store.upsert(
        "optimization_runs",
        run_id,
        {
            "id": run_id,
            "scope": scope,
            "status": "pending",
            "max_iterations": max_iterations,
            "iterations_completed": 0,
            "best_prompt_id": None,
            "improvement_history": [],
            "error_message": None,
            "created_at": utcnow(),
        },
    )


async def optimize_prompt_task(
    payload: OptimizePromptPayload,
    store: RecordStore,
    settings: Optional[Settings] = None,
    client: Optional[CompletionClient] = None,
):
    """Run the optimization loop for ``payload.run_id``; returns the OptimizationResult."""
    settings = settings or Settings()
    if client is not None:
        return await _optimize_prompt(payload, store, settings, client)
    client = CompletionClient(settings=settings)
    try:
        return await _optimize_prompt(payload, store, settings, client)
    finally:
        await client.aclose()


async def _optimize_prompt(
    payload: OptimizePromptPayload, store: RecordStore, settings: Settings, client: CompletionClient
):
    if client.on_call is None:
        client.on_call = call_recorder(store, run_id=payload.run_id)

    await store.require("optimization_runs", payload.run_id)
    await store.upsert("optimization_runs", payload.run_id, {"status": "running", "started_at": utcnow()})
    try:
        eval_set = load_eval_set(payload.eval_set_path)
        initial = await ensure_prompt_version(store, payload.scope)
        optimizer = PromptOptimizer(
            client,
            store,
            payload.scope,
            settings=settings,
            model=payload.model,
            credentials=await credentials_for(store, settings, payload.session_keys),
            run_id=payload.run_id,
        )
        result = await optimizer.optimize(initial, eval_set, payload.max_iterations)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Optimization run %s failed", payload.run_id)
        await store.upsert(
            "optimization_runs",
            payload.run_id,
            {"status": "failed", "error_message": classify_failure(exc), "completed_at": utcnow()},
        )
        raise

    await store.upsert(
        "optimization_runs",
        payload.run_id,
        {
            "status": "completed",
            "iterations_completed": result.iterations_completed,
            "best_prompt_id": result.final_document.id,
            "best_metrics": result.best_metrics.summary() if result.best_metrics else None,
            "improvement_history": [record.to_dict() for record in result.history],
            "converged": result.converged,
            "completed_at": utcnow(),
        },
    )
    return result


async def reset_prompt(store: RecordStore, scope: str = DEFAULT_SCOPE) -> PromptVersion:
    """Stop unfinished runs in ``scope`` and install the default template as a new active version."""
    for run in await store.query("optimization_runs", scope=scope):
        if run.get("status") not in ("completed", "failed"):
            await store.upsert("optimization_runs", run["id"], {"status": "failed", "error_message": RESET_RUN_ERROR})
    latest = await store.latest_prompt_version(scope)
    next_version = (latest["version"] if latest else 0) + 1
    await store.deactivate_prompt_versions(scope)
    record = await store.insert_prompt_version(
        scope, next_version, default_instruction_document(), is_active=True, gradient_summary=RESET_SUMMARY
    )
    logger.info("Reset scope %s to default template (v%d)", scope, next_version)
    return PromptVersion.from_record(record)


async def get_current_prompt(store: RecordStore, scope: str = DEFAULT_SCOPE) -> Dict[str, Any]:
    """Current prompt of ``scope`` plus the previous version's text for diffing."""
    record = await store.active_prompt_version(scope) or await store.latest_prompt_version(scope)
    if record is None:
        return {"current": None, "previous_text": None}
    versions: List[Dict[str, Any]] = await store.prompt_versions(scope)
    earlier = [v for v in versions if v["version"] < record["version"]]
    return {
        "current": PromptVersion.from_record(record),
        "previous_text": earlier[-1]["prompt_text"] if earlier else None,
    }

"""
Prompt optimization loop.

Each iteration evaluates the current instruction document against the
labeled set, records its metrics on the prompt version and keeps track
of the best version by composite score.  Unless the convergence
thresholds are met, the errors are turned into a gradient, the gradient
into edits, and the edited document becomes a new prompt version whose
parent is the current one.  Edits that change nothing are recorded in
the history but do not create a version.

Whatever the exit path (convergence, iteration budget or an exception),
the best-scoring version is promoted to the only active version in the
optimization scope before the loop returns or re-raises.

Evaluation fans out across companies in chunks of at most
``optimization_concurrency`` concurrent rankings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import Settings
from ..normalize.schema import Candidate, Company
from ..normalize.size import normalize_size_bucket
from ..normalize.title import normalize_title
from ..rank.llm_providers import CompletionClient, CredentialContext
from ..rank.orchestrator import RankingOrchestrator, RankingOutcome
from ..store import RecordStore
from .editor import EditResult, generate_prompt_edits
from .eval_set import EvalLead, EvalSet
from .gradient import Gradient, generate_gradient
from .metrics import Metrics, Prediction, compute_metrics, find_rank_mismatches

logger = logging.getLogger(__name__)

# Eval companies with an unrecognized employee range are judged as SMB
EVAL_DEFAULT_SIZE_BUCKET = "smb"


@dataclass
class PromptVersion:
    id: str
    version: int
    text: str
    parent_id: Optional[str] = None
    gradient_summary: Optional[str] = None
    metrics: Optional[Dict[str, float]] = None
    is_active: bool = False

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PromptVersion":
        return cls(
            id=record["id"],
            version=record["version"],
            text=record["prompt_text"],
            parent_id=record.get("parent_id"),
            gradient_summary=record.get("gradient_summary"),
            metrics=record.get("metrics"),
            is_active=bool(record.get("is_active")),
        )


@dataclass
class IterationRecord:
    iteration: int
    version: int
    metrics: Dict[str, float]
    converged: bool = False
    gradient: Optional[Dict[str, Any]] = None
    edits: List[Dict[str, Any]] = field(default_factory=list)
    changes_summary: Optional[str] = None
    new_version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "version": self.version,
            "metrics": dict(self.metrics),
            "converged": self.converged,
            "gradient": self.gradient,
            "edits": list(self.edits),
            "changesSummary": self.changes_summary,
            "newVersion": self.new_version,
        }


@dataclass
class OptimizationResult:
    final_document: PromptVersion
    best_metrics: Optional[Metrics]
    history: List[IterationRecord]
    converged: bool = False

    @property
    def iterations_completed(self) -> int:
        return len(self.history)


def eval_company(name: str, leads: List[EvalLead]) -> Tuple[Company, List[Candidate]]:
    employee_range = leads[0].employee_range if leads else ""
    company = Company(
        id=name,
        name=name,
        employee_range=employee_range,
        size_bucket=normalize_size_bucket(employee_range) or EVAL_DEFAULT_SIZE_BUCKET,
    )
    candidates = [
        Candidate(
            id=lead.id,
            full_name=lead.full_name,
            title=lead.title,
            normalized_title=normalize_title(lead.title),
            company_id=name,
        )
        for lead in leads
    ]
    return company, candidates


class PromptOptimizer:
    """Evaluate -> diagnose -> edit, tracking the best prompt version."""

    def __init__(
        self,
        client: CompletionClient,
        store: RecordStore,
        scope: str,
        settings: Optional[Settings] = None,
        model: Optional[str] = None,
        credentials: Optional[CredentialContext] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.scope = scope
        self.settings = settings or client.settings
        self.model = model or self.settings.optimizer_model
        self.credentials = credentials
        self.run_id = run_id
        # Evaluation never writes lead records
        self.orchestrator = RankingOrchestrator(client, store=None, settings=self.settings)

    async def _rank_eval_company(self, document: str, name: str, leads: List[EvalLead]) -> RankingOutcome:
        company, candidates = eval_company(name, leads)
        return await self.orchestrator.rank_company(
            company, candidates, document, model=self.model, credentials=self.credentials
        )

    async def evaluate(self, document: str, eval_set: EvalSet) -> Tuple[Metrics, Dict[str, Prediction]]:
        """Rank the whole labeled set with ``document`` and score it.

        Raises:
            ProvidersExhaustedError: when any company ran out of providers.
        """
        companies = list(eval_set.by_company().items())
        chunk_size = max(1, self.settings.optimization_concurrency)
        predictions: Dict[str, Prediction] = {}
        for start in range(0, len(companies), chunk_size):
            chunk = companies[start : start + chunk_size]
            outcomes = await asyncio.gather(
                *(self._rank_eval_company(document, name, leads) for name, leads in chunk)
            )
            for outcome in outcomes:
                if outcome.provider_error is not None:
                    raise outcome.provider_error
                for result in outcome.results:
                    predictions[result.lead_id] = Prediction(result.is_relevant, result.rank_within_company)
        return compute_metrics(predictions, eval_set.leads), predictions

    def _converged(self, metrics: Metrics) -> bool:
        return metrics.f1 > self.settings.f1_threshold and metrics.ndcg_at_3 > self.settings.ndcg_threshold

    async def _diagnose(
        self, current: PromptVersion, metrics: Metrics, predictions: Dict[str, Prediction], eval_set: EvalSet
    ) -> Tuple[Gradient, EditResult]:
        mismatches = find_rank_mismatches(predictions, eval_set.leads)
        gradient = await generate_gradient(
            self.client, current.text, metrics, mismatches, model=self.model, credentials=self.credentials
        )
        edit = await generate_prompt_edits(
            self.client, current.text, gradient, model=self.model, credentials=self.credentials
        )
        return gradient, edit

    async def _next_version_number(self) -> int:
        latest = await self.store.latest_prompt_version(self.scope)
        return (latest["version"] if latest else 0) + 1

    async def _report_progress(
        self, iteration: int, history: List[IterationRecord], current: PromptVersion, best: Optional[PromptVersion]
    ) -> None:
        if self.run_id is None:
            return
        await self.store.upsert(
            "optimization_runs",
            self.run_id,
            {
                "iterations_completed": iteration,
                "current_prompt_id": current.id,
                "best_prompt_id": best.id if best else None,
                "improvement_history": [record.to_dict() for record in history],
            },
        )

    async def optimize(
        self, initial: PromptVersion, eval_set: EvalSet, max_iterations: Optional[int] = None
    ) -> OptimizationResult:
        max_iterations = max_iterations if max_iterations is not None else self.settings.max_iterations
        current = initial
        best: Optional[PromptVersion] = None
        best_metrics: Optional[Metrics] = None
        history: List[IterationRecord] = []
        converged = False

        try:
            for iteration in range(1, max_iterations + 1):
                logger.info("Optimization iteration %d/%d (prompt v%d)", iteration, max_iterations, current.version)
                metrics, predictions = await self.evaluate(current.text, eval_set)
                current.metrics = metrics.summary()
                await self.store.upsert("prompt_versions", current.id, {"metrics": current.metrics})
                logger.info(
                    "v%d: F1=%.3f NDCG@3=%.3f composite=%.3f",
                    current.version,
                    metrics.f1,
                    metrics.ndcg_at_3,
                    metrics.composite,
                )
                if best_metrics is None or metrics.composite > best_metrics.composite:
                    best, best_metrics = current, metrics

                record = IterationRecord(iteration, current.version, metrics.summary())
                history.append(record)
                if self._converged(metrics):
                    logger.info("Converged at iteration %d", iteration)
                    record.converged = True
                    converged = True
                    await self._report_progress(iteration, history, current, best)
                    break

                gradient, edit = await self._diagnose(current, metrics, predictions, eval_set)
                record.gradient = gradient.to_dict()
                record.edits = [e.to_dict() for e in edit.edits]
                record.changes_summary = edit.changes_summary
                if edit.is_noop(current.text):
                    logger.info("Iteration %d produced no edits; keeping v%d", iteration, current.version)
                    await self._report_progress(iteration, history, current, best)
                    continue

                stored = await self.store.insert_prompt_version(
                    self.scope,
                    await self._next_version_number(),
                    edit.new_prompt,
                    is_active=False,
                    parent_id=current.id,
                    gradient_summary=edit.changes_summary,
                )
                current = PromptVersion.from_record(stored)
                record.new_version = current.version
                await self._report_progress(iteration, history, current, best)
        finally:
            if best is not None:
                await self.store.activate_prompt_version(self.scope, best.id)
                best.is_active = True
                logger.info("Promoted prompt v%d as active", best.version)

        return OptimizationResult(best or initial, best_metrics, history, converged)

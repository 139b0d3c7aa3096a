"""Tests for the task entry points that drive jobs and optimization runs."""

from __future__ import annotations

import asyncio
import re

import pytest  # type: ignore

from conftest import status_error
from personarank.errors import PersonaRankError, ProvidersExhaustedError
from personarank.jobs import (
    OptimizePromptPayload,
    RankCompanyPayload,
    create_optimization_run,
    get_current_prompt,
    optimize_prompt_task,
    rank_company_task,
    reset_prompt,
)
from personarank.rank.prompt import default_instruction_document

ROW = re.compile(r"^\d+\. ID: (\d+) \|", re.MULTILINE)

EVAL_CSV = """Full Name,Title,Company,Employee Range,Rank
Jane Doe,VP of Sales,Acme,51-200,1
John Lee,HR Manager,Acme,51-200,-
"""


def everyone_relevant(model, messages):
    ids = ROW.findall(messages[0]["content"])
    return {"results": [{"id": int(i), "is_relevant": True, "score": 95} for i in ids]}


def _seed_company(store, leads=True):
    asyncio.run(
        store.upsert(
            "companies",
            "co-1",
            {"id": "co-1", "name": "Acme", "employee_range": "51-200", "size_bucket": "smb"},
        )
    )
    if leads:
        for lead_id, name, title in (("l1", "Jane Doe", "VP of Sales"), ("l2", "John Lee", "HR Manager")):
            asyncio.run(store.upsert("leads", lead_id, {"id": lead_id, "company_id": "co-1", "full_name": name, "title": title}))
    return asyncio.run(store.create_job(total_companies=1, total_leads=2))


def test_rank_company_task_completes_job(settings, store, make_client) -> None:
    job = _seed_company(store)
    client, _ = make_client(handler=everyone_relevant)
    summary = asyncio.run(rank_company_task(RankCompanyPayload(job["id"], "co-1"), store, settings, client))

    assert summary == {"status": "success", "company_id": "co-1", "leads_ranked": 2, "relevant": 1, "skipped": 0}
    job = asyncio.run(store.get("jobs", job["id"]))
    assert job["status"] == "completed"
    assert job["processed_companies"] == 1
    assert job["processed_leads"] == 2
    assert not job["partial_completion"]
    assert asyncio.run(store.get("leads", "l1"))["rank_within_company"] == 1

    (call,) = asyncio.run(store.query("ai_calls"))
    assert call["call_type"] == "ranking_batch"
    assert call["job_id"] == job["id"]
    assert call["company_id"] == "co-1"
    assert call["model"] == "gemini-2.5-flash"
    assert call["estimated_cost_usd"] > 0


def test_rank_company_task_records_partial_completion(settings, store, make_client) -> None:
    job = _seed_company(store)
    client, _ = make_client(handler=lambda model, messages: status_error(429))
    summary = asyncio.run(rank_company_task(RankCompanyPayload(job["id"], "co-1"), store, settings, client))

    assert summary["status"] == "partial"
    job = asyncio.run(store.get("jobs", job["id"]))
    assert job["status"] == "completed"
    assert job["partial_completion"]
    assert job["skipped_leads_count"] == 1
    assert job["rate_limit_error"].startswith("Gemini Rate Limit")


def test_rank_company_without_leads_fails_job(settings, store, make_client) -> None:
    job = _seed_company(store, leads=False)
    client, _ = make_client()
    with pytest.raises(PersonaRankError):
        asyncio.run(rank_company_task(RankCompanyPayload(job["id"], "co-1"), store, settings, client))
    job = asyncio.run(store.get("jobs", job["id"]))
    assert job["status"] == "failed"
    assert job["error_message"] == "No leads for company co-1"


def test_optimize_task_converges(tmp_path, settings, store, make_client) -> None:
    path = tmp_path / "eval.csv"
    path.write_text(EVAL_CSV, encoding="utf-8")
    client, _ = make_client(handler=everyone_relevant)

    run = asyncio.run(create_optimization_run(store, "default", 3))
    result = asyncio.run(optimize_prompt_task(OptimizePromptPayload(run["id"], str(path)), store, settings, client))

    assert result.converged
    assert result.best_metrics.f1 == pytest.approx(1.0)
    run = asyncio.run(store.get("optimization_runs", run["id"]))
    assert run["status"] == "completed"
    assert run["converged"] is True
    assert run["best_prompt_id"] == result.final_document.id
    assert run["iterations_completed"] == 1
    assert [c["run_id"] for c in asyncio.run(store.query("ai_calls"))] == [run["id"]]


def test_optimize_task_classifies_rate_limits(tmp_path, settings, store, make_client) -> None:
    path = tmp_path / "eval.csv"
    path.write_text(EVAL_CSV, encoding="utf-8")
    client, _ = make_client(handler=lambda model, messages: status_error(429))

    run = asyncio.run(create_optimization_run(store, "default", 3))
    with pytest.raises(ProvidersExhaustedError):
        asyncio.run(optimize_prompt_task(OptimizePromptPayload(run["id"], str(path)), store, settings, client))
    run = asyncio.run(store.get("optimization_runs", run["id"]))
    assert run["status"] == "failed"
    assert run["error_message"] == "rate_limit_exceeded"


def test_reset_prompt_and_current(store) -> None:
    assert asyncio.run(get_current_prompt(store, "s")) == {"current": None, "previous_text": None}

    asyncio.run(store.insert_prompt_version("s", 1, "first", is_active=True))
    asyncio.run(store.insert_prompt_version("s", 2, "second"))
    run = asyncio.run(create_optimization_run(store, "s", 5))

    version = asyncio.run(reset_prompt(store, "s"))
    assert version.version == 3
    assert version.text == default_instruction_document()
    assert version.gradient_summary == "Reset to default template"
    assert [v["version"] for v in asyncio.run(store.prompt_versions("s")) if v["is_active"]] == [3]

    run = asyncio.run(store.get("optimization_runs", run["id"]))
    assert run["status"] == "failed"
    assert run["error_message"] == "Reset by user (Force Stop)"

    current = asyncio.run(get_current_prompt(store, "s"))
    assert current["current"].version == 3
    assert current["previous_text"] == "second"


def test_caller_client_is_left_open(settings, store, make_client) -> None:
    job = _seed_company(store)
    client, transport = make_client(handler=everyone_relevant)
    asyncio.run(rank_company_task(RankCompanyPayload(job["id"], "co-1"), store, settings, client))
    assert not transport.closed

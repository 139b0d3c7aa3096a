"""
Command line interface for PersonaRank.

Subcommands:

* ``rank`` – load a leads CSV into the record store, rank every company
  and write a ranked CSV report.
* ``optimize`` – run the prompt optimization loop against a labeled
  evaluation CSV.
* ``prompt show`` / ``prompt reset`` – inspect or reset the active
  instruction document of an optimization scope.
* ``keys set`` – store an API key for a specific model.
* ``report`` – print the ranked leads held in the record store.

Configuration comes from ``personarank/config.yaml`` (or ``--config``)
plus environment variables; see :mod:`personarank.config`.
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import difflib
import logging
import uuid
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm  # type: ignore

from .config import Settings, load_settings
from .jobs import (
    DEFAULT_SCOPE,
    OptimizePromptPayload,
    RankCompanyPayload,
    create_optimization_run,
    get_current_prompt,
    optimize_prompt_task,
    rank_company_task,
    reset_prompt,
)
from .normalize.company import canonical_key
from .normalize.size import normalize_size_bucket
from .normalize.title import normalize_title
from .rank.llm_providers import CompletionClient
from .store import JsonFileStore, RecordStore

logger = logging.getLogger("personarank.cli")

LEAD_COLUMNS: Dict[str, Sequence[str]] = {
    "full_name": ("Full Name", "Name", "FullName", "full_name"),
    "title": ("Title", "Job Title", "title"),
    "company": ("Company", "Company Name", "company"),
    "domain": ("Domain", "Website", "Company Domain", "domain"),
    "employee_range": ("Employee Range", "Employees", "Size", "employee_range"),
    "industry": ("Industry", "industry"),
}

REPORT_FIELDS = [
    "company",
    "full_name",
    "title",
    "is_relevant",
    "role_type",
    "score",
    "rank_within_company",
    "reasoning",
    "flags",
]


def build_client(settings: Settings) -> CompletionClient:
    return CompletionClient(settings=settings)


def _pick(row: Dict[str, str], aliases: Sequence[str]) -> str:
    lowered = {(k or "").strip().lower(): v for k, v in row.items()}
    for alias in aliases:
        value = lowered.get(alias.lower())
        if value:
            return value.strip()
    return ""


def _load_leads_csv(path: str) -> List[Dict[str, str]]:
    rows: List[Dict[str, str]] = []
    with open(path, "r", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for row in reader:
            lead = {key: _pick(row, aliases) for key, aliases in LEAD_COLUMNS.items()}
            if lead["full_name"] and lead["company"]:
                rows.append(lead)
    return rows


async def ingest_leads(store: RecordStore, rows: List[Dict[str, str]]) -> List[str]:
    """Upsert companies and leads; returns company IDs in first-seen order."""
    company_ids: List[str] = []
    for row in rows:
        key = canonical_key(row["company"], row["domain"] or None)
        company_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"company:{key}"))
        if company_id not in company_ids:
            company_ids.append(company_id)
            await store.upsert(
                "companies",
                company_id,
                {
                    "id": company_id,
                    "canonical_key": key,
                    "name": row["company"],
                    "domain": row["domain"] or None,
                    "employee_range": row["employee_range"],
                    "size_bucket": normalize_size_bucket(row["employee_range"]),
                    "industry": row["industry"] or None,
                },
            )
        lead_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"lead:{key}|{row['full_name']}|{row['title']}".lower()))
        await store.upsert(
            "leads",
            lead_id,
            {
                "id": lead_id,
                "company_id": company_id,
                "full_name": row["full_name"],
                "title": row["title"],
                "title_normalized": normalize_title(row["title"]),
            },
        )
    return company_ids


async def _run_ranking(args: argparse.Namespace, settings: Settings, store: RecordStore) -> str:
    rows = _load_leads_csv(args.leads)
    company_ids = await ingest_leads(store, rows)
    job = await store.create_job(total_companies=len(company_ids), total_leads=len(rows))
    logger.info("Ranking %d leads across %d companies (job %s)", len(rows), len(company_ids), job["id"])
    client = build_client(settings)
    try:
        for company_id in tqdm(company_ids, desc="Ranking companies", unit="company"):
            payload = RankCompanyPayload(job_id=job["id"], company_id=company_id, model=args.model, scope=args.scope)
            await rank_company_task(payload, store, settings, client)
    finally:
        await client.aclose()
    return job["id"]


async def _company_report(store: RecordStore) -> List[Dict[str, object]]:
    companies = {c["id"]: c for c in await store.query("companies")}
    rows: List[Dict[str, object]] = []
    for lead in await store.query("leads"):
        if "is_relevant" not in lead:
            continue
        company = companies.get(lead.get("company_id"), {})
        rows.append(
            {
                "company": company.get("name", ""),
                "full_name": lead.get("full_name", ""),
                "title": lead.get("title", ""),
                "is_relevant": lead.get("is_relevant"),
                "role_type": lead.get("role_type"),
                "score": lead.get("score"),
                "rank_within_company": lead.get("rank_within_company"),
                "reasoning": lead.get("reasoning", ""),
                "flags": "; ".join(lead.get("flags") or []),
            }
        )
    rank_key = lambda r: (r["company"], r["rank_within_company"] is None, r["rank_within_company"] or 0)  # noqa: E731
    return sorted(rows, key=rank_key)


def cmd_rank(args: argparse.Namespace) -> None:
    """Rank a leads CSV and write a ranked report."""
    settings: Settings = args.settings
    store = JsonFileStore(args.store or settings.store_path)
    job_id = asyncio.run(_run_ranking(args, settings, store))
    rows = asyncio.run(_company_report(store))
    with open(args.out, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=REPORT_FIELDS)
        writer.writeheader()
        writer.writerows(rows)
    job = asyncio.run(store.require("jobs", job_id))
    if job.get("partial_completion"):
        logger.warning(
            "Job %s partially completed: %d leads skipped (%s)",
            job_id,
            job.get("skipped_leads_count", 0),
            job.get("rate_limit_error"),
        )
    logger.info("Wrote %d ranked leads to %s", len(rows), args.out)


def cmd_optimize(args: argparse.Namespace) -> None:
    """Run the optimization loop against a labeled CSV."""
    settings: Settings = args.settings
    store = JsonFileStore(args.store or settings.store_path)
    max_iterations = args.max_iterations or settings.max_iterations

    async def run():
        record = await create_optimization_run(store, args.scope, max_iterations)
        payload = OptimizePromptPayload(
            run_id=record["id"],
            eval_set_path=args.eval_set,
            scope=args.scope,
            max_iterations=max_iterations,
            model=args.model,
        )
        client = build_client(settings)
        try:
            return await optimize_prompt_task(payload, store, settings, client)
        finally:
            await client.aclose()

    result = asyncio.run(run())
    for record in result.history:
        m = record.metrics
        print(
            f"Iteration {record.iteration} (v{record.version}): F1 {m['f1']:.1%}  "
            f"NDCG@3 {m['ndcg_at_3']:.1%}  composite {m['composite']:.1%}"
        )
    print(f"Active prompt is now v{result.final_document.version}" + (" (converged)" if result.converged else ""))


def cmd_prompt_show(args: argparse.Namespace) -> None:
    store = JsonFileStore(args.store or args.settings.store_path)
    current = asyncio.run(get_current_prompt(store, args.scope))
    version = current["current"]
    if version is None:
        print(f"No prompt versions in scope '{args.scope}'")
        return
    print(f"# v{version.version} ({'active' if version.is_active else 'inactive'})")
    if version.gradient_summary:
        print(f"# {version.gradient_summary}")
    if args.diff and current["previous_text"] is not None:
        diff = difflib.unified_diff(
            current["previous_text"].splitlines(), version.text.splitlines(), "previous", "current", lineterm=""
        )
        print("\n".join(diff))
    else:
        print(version.text)


def cmd_prompt_reset(args: argparse.Namespace) -> None:
    store = JsonFileStore(args.store or args.settings.store_path)
    version = asyncio.run(reset_prompt(store, args.scope))
    print(f"Scope '{args.scope}' reset to default template (v{version.version})")


def cmd_keys_set(args: argparse.Namespace) -> None:
    store = JsonFileStore(args.store or args.settings.store_path)
    asyncio.run(store.set_api_key(args.model, args.key))
    logger.info("Stored API key for %s", args.model)


def cmd_report(args: argparse.Namespace) -> None:
    """Print ranked relevant leads per company."""
    store = JsonFileStore(args.store or args.settings.store_path)
    rows = [r for r in asyncio.run(_company_report(store)) if r["rank_within_company"] is not None]
    current = None
    shown = 0
    for row in rows:
        if row["company"] != current:
            current = row["company"]
            shown = 0
            print(f"\n{current}")
        if shown >= args.limit:
            continue
        shown += 1
        print(f"  {row['rank_within_company']:02d}. {row['full_name']} – {row['title']} [{row['role_type']}, {row['score']}]")
        print(f"      {row['reasoning']}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="personarank", description="Persona lead ranking CLI")
    parser.add_argument("--config", help="YAML config file (defaults to the bundled config.yaml)")
    parser.add_argument("--store", help="Path to the JSON record store")
    parser.add_argument("--log-level", dest="log_level", help="Logging level (default from config)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    rank_cmd = subparsers.add_parser("rank", help="Rank leads from a CSV file")
    rank_cmd.add_argument("--leads", required=True, help="Leads CSV (name, title, company, employee range)")
    rank_cmd.add_argument("--model", help="Preferred model (fallbacks apply)")
    rank_cmd.add_argument("--scope", help="Use this optimization scope's active prompt")
    rank_cmd.add_argument("--out", default="ranked_leads.csv", help="Output CSV path")
    rank_cmd.set_defaults(func=cmd_rank)

    opt_cmd = subparsers.add_parser("optimize", help="Optimize the ranking prompt against a labeled set")
    opt_cmd.add_argument("--eval-set", dest="eval_set", required=True, help="Labeled evaluation CSV")
    opt_cmd.add_argument("--max-iterations", dest="max_iterations", type=int, help="Iteration budget")
    opt_cmd.add_argument("--scope", default=DEFAULT_SCOPE, help="Optimization scope (session key)")
    opt_cmd.add_argument("--model", help="Model used for evaluation and critique")
    opt_cmd.set_defaults(func=cmd_optimize)

    prompt_cmd = subparsers.add_parser("prompt", help="Prompt version commands")
    prompt_sub = prompt_cmd.add_subparsers(dest="subcommand", required=True)
    show_cmd = prompt_sub.add_parser("show", help="Show the current prompt")
    show_cmd.add_argument("--scope", default=DEFAULT_SCOPE)
    show_cmd.add_argument("--diff", action="store_true", help="Show a diff against the previous version")
    show_cmd.set_defaults(func=cmd_prompt_show)
    reset_cmd = prompt_sub.add_parser("reset", help="Reset to the default prompt")
    reset_cmd.add_argument("--scope", default=DEFAULT_SCOPE)
    reset_cmd.set_defaults(func=cmd_prompt_reset)

    keys_cmd = subparsers.add_parser("keys", help="API key commands")
    keys_sub = keys_cmd.add_subparsers(dest="subcommand", required=True)
    set_key_cmd = keys_sub.add_parser("set", help="Store an API key for a model")
    set_key_cmd.add_argument("--model", required=True)
    set_key_cmd.add_argument("--key", required=True)
    set_key_cmd.set_defaults(func=cmd_keys_set)

    report_cmd = subparsers.add_parser("report", help="Print ranked leads from the store")
    report_cmd.add_argument("--limit", type=int, default=10, help="Leads to show per company")
    report_cmd.set_defaults(func=cmd_report)

    args = parser.parse_args(argv)
    args.settings = load_settings(args.config)
    level = (args.log_level or args.settings.log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format="[%(levelname)s] %(message)s")
    args.func(args)


if __name__ == "__main__":
    main()

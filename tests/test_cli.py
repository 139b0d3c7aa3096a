"""Tests for CLI ingestion and the subcommands."""

from __future__ import annotations

import asyncio
import csv
import re

import pytest  # type: ignore

from conftest import FakeTransport
from personarank import cli
from personarank.cli import _load_leads_csv, ingest_leads, main
from personarank.rank.llm_providers import CompletionClient
from personarank.store import InMemoryStore, JsonFileStore

LEADS_CSV = """Name,Job Title,Company,Website,Employees,Industry
Jane Doe,VP of Sales,Acme Inc,acme.com,51-200,Manufacturing
John Lee,HR Manager,ACME INC,https://www.acme.com/,51-200,Manufacturing
Ann Roe,CEO,Globex,,"1,001-5,000",
,No Name,Globex,,1001-5000,
"""

RANK_CSV = """Full Name,Title,Company,Domain,Employee Range
Jane Doe,VP of Sales,Acme Inc,acme.com,51-200
Bob Ray,Sales Manager,Acme Inc,acme.com,51-200
John Lee,HR Manager,Acme Inc,acme.com,51-200
Ann Roe,Sales Director,Initech,initech.com,51-200
"""

EVAL_CSV = """Full Name,Title,Company,Employee Range,Rank
Jane Doe,VP of Sales,Acme,51-200,1
John Lee,HR Manager,Acme,51-200,-
"""

ROW = re.compile(r"^\d+\. ID: (\d+) \| [^|]+ \| (.+)$", re.MULTILINE)


def rank_by_title(model, messages):
    rows = ROW.findall(messages[0]["content"])
    return {
        "results": [
            {"id": int(i), "is_relevant": True, "score": 95 if title.startswith("VP") else 70} for i, title in rows
        ]
    }


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Temp config, env key and a fake transport behind ``build_client``."""
    for name in ("PERSONARANK_MODEL", "PERSONARANK_BATCH_SIZE", "PERSONARANK_STORE", "GROQ_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "gemini-env")
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "config.yaml"
    config.write_text("model: gemini-2.5-flash\nranking:\n  retry_delay_base: 0.0\n", encoding="utf-8")

    transports = []

    def build(settings):
        transport = FakeTransport(handler=rank_by_title)
        transports.append(transport)
        return CompletionClient(transport=transport, settings=settings)

    monkeypatch.setattr(cli, "build_client", build)
    base = ["--config", str(config), "--store", str(tmp_path / "store.json")]
    return base, transports


def test_ingest_groups_by_domain(tmp_path) -> None:
    path = tmp_path / "leads.csv"
    path.write_text(LEADS_CSV, encoding="utf-8")
    rows = _load_leads_csv(str(path))
    assert [r["full_name"] for r in rows] == ["Jane Doe", "John Lee", "Ann Roe"]

    store = InMemoryStore()
    company_ids = asyncio.run(ingest_leads(store, rows))
    assert len(company_ids) == 2
    acme, globex = (asyncio.run(store.get("companies", cid)) for cid in company_ids)
    assert acme["canonical_key"] == "acme.com"
    assert acme["size_bucket"] == "smb"
    assert globex["size_bucket"] == "enterprise"
    assert len(asyncio.run(store.leads_for_company(company_ids[0]))) == 2

    # re-ingesting the same rows upserts instead of duplicating
    asyncio.run(ingest_leads(store, rows))
    assert len(asyncio.run(store.query("leads"))) == 3


def test_keys_and_prompt_commands(tmp_path, capsys) -> None:
    store_path = tmp_path / "store.json"
    main(["--store", str(store_path), "keys", "set", "--model", "gemini-2.5-pro", "--key", "k1"])
    assert asyncio.run(JsonFileStore(store_path).stored_api_keys()) == {"gemini-2.5-pro": "k1"}

    main(["--store", str(store_path), "prompt", "show", "--scope", "s"])
    assert "No prompt versions in scope 's'" in capsys.readouterr().out

    main(["--store", str(store_path), "prompt", "reset", "--scope", "s"])
    assert "reset to default template (v1)" in capsys.readouterr().out

    main(["--store", str(store_path), "prompt", "show", "--scope", "s"])
    out = capsys.readouterr().out
    assert out.startswith("# v1 (active)")
    assert "## Candidates to Rank" in out


def test_rank_writes_report_and_closes_client(tmp_path, cli_env, capsys) -> None:
    base, transports = cli_env
    leads = tmp_path / "leads.csv"
    leads.write_text(RANK_CSV, encoding="utf-8")
    out = tmp_path / "ranked.csv"

    main(base + ["rank", "--leads", str(leads), "--out", str(out)])

    # one client serves every company and is closed afterwards
    (transport,) = transports
    assert len(transport.calls) == 2
    assert transport.closed

    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    ranks = {r["full_name"]: r["rank_within_company"] for r in rows}
    assert ranks == {"Jane Doe": "1", "Bob Ray": "2", "John Lee": "", "Ann Roe": "1"}
    john = next(r for r in rows if r["full_name"] == "John Lee")
    assert john["is_relevant"] == "False"
    assert john["flags"] == "HR"

    main(base + ["report", "--limit", "1"])
    report = capsys.readouterr().out
    assert "01. Jane Doe – VP of Sales" in report
    assert "Bob Ray" not in report
    assert "01. Ann Roe – Sales Director" in report
    assert "John Lee" not in report


def test_optimize_prints_history(tmp_path, cli_env, capsys) -> None:
    base, transports = cli_env
    eval_set = tmp_path / "eval.csv"
    eval_set.write_text(EVAL_CSV, encoding="utf-8")

    main(base + ["optimize", "--eval-set", str(eval_set), "--max-iterations", "2", "--scope", "s"])

    out = capsys.readouterr().out
    assert out.startswith("Iteration 1 (v1): F1 100.0%")
    assert "Active prompt is now v1 (converged)" in out
    assert transports[0].closed

    (run,) = asyncio.run(JsonFileStore(tmp_path / "store.json").query("optimization_runs"))
    assert run["status"] == "completed"
    assert run["scope"] == "s"
    assert run["iterations_completed"] == 1

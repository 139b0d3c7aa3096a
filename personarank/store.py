"""
Keyed record store.

Ranking and optimization persist everything through a small async
interface with upsert semantics: every write names the table and the
record key, so a retried or restarted task overwrites its own rows
instead of duplicating them.  Two implementations are provided: an
in-memory store used by tests and short-lived runs, and a JSON-file
store used by the CLI.

Tables: ``companies``, ``leads``, ``jobs``, ``prompt_versions``,
``optimization_runs``, ``api_keys`` and ``ai_calls``.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import RecordNotFoundError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

TABLES = ("companies", "leads", "jobs", "prompt_versions", "optimization_runs", "api_keys", "ai_calls")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class RecordStore(ABC):
    """Abstract keyed store; domain helpers are built on four primitives."""

    @abstractmethod
    async def upsert(self, table: str, key: str, fields: Record) -> Record:
        """Merge ``fields`` into the record at ``key`` (creating it) and return a copy."""

    @abstractmethod
    async def get(self, table: str, key: str) -> Optional[Record]:
        """Return a copy of the record or ``None``."""

    @abstractmethod
    async def query(self, table: str, **filters: Any) -> List[Record]:
        """Return copies of records whose fields equal every filter, in insertion order."""

    @abstractmethod
    async def increment(self, table: str, key: str, **deltas: int) -> Record:
        """Atomically add ``deltas`` to numeric fields of an existing record."""

    async def require(self, table: str, key: str) -> Record:
        record = await self.get(table, key)
        if record is None:
            raise RecordNotFoundError(table, key)
        return record

    # Leads

    async def save_lead_result(self, lead_id: str, fields: Record) -> Record:
        return await self.upsert("leads", lead_id, dict(fields, updated_at=utcnow()))

    async def leads_for_company(self, company_id: str) -> List[Record]:
        return await self.query("leads", company_id=company_id)

    # Jobs

    async def create_job(self, total_companies: int, total_leads: int = 0, job_id: Optional[str] = None) -> Record:
        job_id = job_id or new_id()
        return await self.upsert(
            "jobs",
            job_id,
            {
                "id": job_id,
                "status": "pending",
                "total_companies": total_companies,
                "processed_companies": 0,
                "total_leads": total_leads,
                "processed_leads": 0,
                "partial_completion": False,
                "skipped_leads_count": 0,
                "rate_limit_error": None,
                "error_message": None,
                "created_at": utcnow(),
            },
        )

    async def update_job(self, job_id: str, **fields: Any) -> Record:
        return await self.upsert("jobs", job_id, dict(fields, updated_at=utcnow()))

    # Prompt versions

    async def prompt_versions(self, scope: str) -> List[Record]:
        versions = await self.query("prompt_versions", scope=scope)
        return sorted(versions, key=lambda v: v["version"])

    async def latest_prompt_version(self, scope: str) -> Optional[Record]:
        versions = await self.prompt_versions(scope)
        return versions[-1] if versions else None

    async def active_prompt_version(self, scope: str) -> Optional[Record]:
        active = await self.query("prompt_versions", scope=scope, is_active=True)
        return max(active, key=lambda v: v["version"]) if active else None

    async def insert_prompt_version(
        self,
        scope: str,
        version: int,
        prompt_text: str,
        is_active: bool = False,
        parent_id: Optional[str] = None,
        gradient_summary: Optional[str] = None,
    ) -> Record:
        prompt_id = new_id()
        return await self.upsert(
            "prompt_versions",
            prompt_id,
            {
                "id": prompt_id,
                "scope": scope,
                "version": version,
                "prompt_text": prompt_text,
                "is_active": is_active,
                "parent_id": parent_id,
                "gradient_summary": gradient_summary,
                "metrics": None,
                "created_at": utcnow(),
            },
        )

    async def activate_prompt_version(self, scope: str, prompt_id: str) -> None:
        """Make ``prompt_id`` the only active version in ``scope``."""
        for record in await self.query("prompt_versions", scope=scope, is_active=True):
            if record["id"] != prompt_id:
                await self.upsert("prompt_versions", record["id"], {"is_active": False})
        await self.upsert("prompt_versions", prompt_id, {"is_active": True})

    async def deactivate_prompt_versions(self, scope: str) -> None:
        for record in await self.query("prompt_versions", scope=scope, is_active=True):
            await self.upsert("prompt_versions", record["id"], {"is_active": False})

    # API keys and call ledger

    async def stored_api_keys(self) -> Dict[str, str]:
        return {r["model"]: r["api_key"] for r in await self.query("api_keys") if r.get("api_key")}

    async def set_api_key(self, model: str, api_key: str) -> Record:
        return await self.upsert("api_keys", model, {"model": model, "api_key": api_key})

    async def record_ai_call(self, fields: Record) -> Record:
        call_id = new_id()
        return await self.upsert("ai_calls", call_id, dict(fields, id=call_id, created_at=utcnow()))


class InMemoryStore(RecordStore):
    """Dict-backed store.  Methods never suspend, so writes are atomic."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Record]] = {name: {} for name in TABLES}

    def _table(self, table: str) -> Dict[str, Record]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        return self._tables[table]

    def _changed(self) -> None:
        """Hook for subclasses that persist after each write."""

    async def upsert(self, table: str, key: str, fields: Record) -> Record:
        rows = self._table(table)
        record = rows.setdefault(key, {})
        record.update(copy.deepcopy(fields))
        self._changed()
        return copy.deepcopy(record)

    async def get(self, table: str, key: str) -> Optional[Record]:
        record = self._table(table).get(key)
        return copy.deepcopy(record) if record is not None else None

    async def query(self, table: str, **filters: Any) -> List[Record]:
        return [
            copy.deepcopy(record)
            for record in self._table(table).values()
            if all(record.get(name) == value for name, value in filters.items())
        ]

    async def increment(self, table: str, key: str, **deltas: int) -> Record:
        record = self._table(table).get(key)
        if record is None:
            raise RecordNotFoundError(table, key)
        for name, delta in deltas.items():
            record[name] = (record.get(name) or 0) + delta
        record["updated_at"] = utcnow()
        self._changed()
        return copy.deepcopy(record)


class JsonFileStore(InMemoryStore):
    """In-memory store mirrored to a JSON file after every write."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            for name in TABLES:
                self._tables[name] = data.get(name, {})
            logger.debug("Loaded record store from %s", self.path)

    def _changed(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._tables, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)

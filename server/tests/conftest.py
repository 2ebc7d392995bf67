from __future__ import annotations

import itertools
from typing import Any, Optional

import pytest

from gridtycoon.services.coordinator import SessionCoordinator
from gridtycoon.services.supabase_store import ErrorKind, StoreError


class FakeStore:
    """In-memory stand-in for ``SupabaseStore`` that records every call.

    Embedded selects are not resolved: rows are returned as stored, so tests
    seed nested ``teams`` / ``participants`` dicts directly.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.procedures: dict[str, Any] = {}
        self.failures: dict[tuple[str, str], StoreError] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.enabled = True
        self.url = "https://example.supabase.co"
        self._ids = itertools.count(1)

    def seed(self, table: str, *rows: dict[str, Any]) -> None:
        self.tables.setdefault(table, []).extend(dict(row) for row in rows)

    def fail(self, op: str, target: str, kind: ErrorKind, message: str = "boom", code: Optional[str] = None) -> None:
        self.failures[(op, target)] = StoreError(kind, message, code)

    def rpc_calls(self, name: str) -> list[Any]:
        return [params for op, target, params in self.calls if op == "rpc" and target == name]

    def _check(self, op: str, target: str, payload: Any) -> None:
        self.calls.append((op, target, payload))
        error = self.failures.get((op, target))
        if error is not None:
            raise error

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters=None,
        exclude=None,
        within=None,
        order=None,
        limit=None,
        single=False,
    ):
        self._check("select", table, filters)
        rows = [
            row
            for row in self.tables.get(table, [])
            if all(row.get(k) == v for k, v in (filters or {}).items())
            and all(row.get(k) != v for k, v in (exclude or {}).items())
            and all(row.get(k) in list(v) for k, v in (within or {}).items())
        ]
        if order:
            rows.sort(key=lambda row: (row.get(order) is None, row.get(order) if row.get(order) is not None else 0))
        if limit is not None:
            rows = rows[:limit]
        if single:
            if len(rows) != 1:
                raise StoreError(ErrorKind.NOT_FOUND, "JSON object requested, multiple (or no) rows returned", "PGRST116")
            return dict(rows[0])
        return [dict(row) for row in rows]

    async def insert(self, table: str, rows):
        self._check("insert", table, rows)
        stored = []
        for row in rows:
            record = dict(row)
            record.setdefault("id", f"{table}-{next(self._ids)}")
            record.setdefault("created_at", f"2024-01-01T00:00:{len(self.tables.get(table, [])):02d}")
            self.tables.setdefault(table, []).append(record)
            stored.append(dict(record))
        return stored

    async def upsert(self, table: str, rows, *, on_conflict: str):
        self._check("upsert", table, {"rows": rows, "on_conflict": on_conflict})
        existing = self.tables.setdefault(table, [])
        stored = []
        for row in rows:
            match = next((r for r in existing if r.get(on_conflict) == row.get(on_conflict)), None)
            if match is None:
                match = {"id": f"{table}-{next(self._ids)}"}
                existing.append(match)
            match.update(row)
            stored.append(dict(match))
        return stored

    async def update(self, table: str, values, *, filters):
        self._check("update", table, {"values": values, "filters": filters})
        updated = []
        for row in self.tables.get(table, []):
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def rpc(self, name: str, params=None):
        self._check("rpc", name, params)
        result = self.procedures.get(name)
        if callable(result):
            return result(params)
        return result


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def coordinator(store: FakeStore) -> SessionCoordinator:
    return SessionCoordinator(store)

"""Supabase access layer used by the session coordinator.

Every call runs the synchronous Supabase client on a worker thread and
translates failures into ``StoreError`` instances carrying an ``ErrorKind``
so callers never have to pattern-match on PostgREST wording.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Iterable, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)

PLACEHOLDER_VALUES = {"YOUR_SUPABASE_URL_HERE", "YOUR_ANON_KEY_HERE"}


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    AUTHENTICATION = "authentication"
    MISSING_RELATION = "missing_relation"
    PERMISSION = "permission"
    DUPLICATE = "duplicate"
    INVALID_REFERENCE = "invalid_reference"
    UNREACHABLE = "unreachable"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


_KIND_BY_CODE = {
    "PGRST116": ErrorKind.NOT_FOUND,
    "PGRST301": ErrorKind.AUTHENTICATION,
    "PGRST302": ErrorKind.AUTHENTICATION,
    "42P01": ErrorKind.MISSING_RELATION,
    "PGRST202": ErrorKind.MISSING_RELATION,
    "PGRST205": ErrorKind.MISSING_RELATION,
    "42501": ErrorKind.PERMISSION,
    "23505": ErrorKind.DUPLICATE,
    "23503": ErrorKind.INVALID_REFERENCE,
}

_GUIDANCE = {
    ErrorKind.NOT_FOUND: "No matching record found.",
    ErrorKind.AUTHENTICATION: "Invalid Supabase credentials. Check your configuration.",
    ErrorKind.MISSING_RELATION: "Database tables not found. Please run the SQL schema first.",
    ErrorKind.PERMISSION: "Permission denied. Check that the database role has access to tables.",
    ErrorKind.DUPLICATE: "Duplicate entry. This record already exists.",
    ErrorKind.INVALID_REFERENCE: "Invalid reference. Check that referenced records exist.",
    ErrorKind.UNREACHABLE: "Cannot reach Supabase. Check your URL and network connection.",
}


class StoreError(Exception):
    """Failure reported by the remote store, classified by kind."""

    def __init__(self, kind: ErrorKind, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code


def classify_api_error(error: APIError) -> StoreError:
    """Map a PostgREST error onto a ``StoreError``.

    Codes are authoritative; message fragments are only consulted for errors
    PostgREST reports without a recognised code.
    """

    code = str(error.code) if error.code else None
    message = error.message or str(error)
    kind = _KIND_BY_CODE.get(code or "")
    if kind is None:
        lowered = message.lower()
        if "jwt" in lowered:
            kind = ErrorKind.AUTHENTICATION
        elif "relation" in lowered and "does not exist" in lowered:
            kind = ErrorKind.MISSING_RELATION
        elif "permission denied" in lowered:
            kind = ErrorKind.PERMISSION
        else:
            kind = ErrorKind.UNKNOWN
    return StoreError(kind, message, code)


def describe_error(error: StoreError, context: str) -> str:
    """Return the caller-facing message for a store failure."""

    guidance = _GUIDANCE.get(error.kind, error.message)
    return f"{context}: {guidance}"


class SupabaseStore:
    """Row and procedure access to the Grid Tycoon Supabase project."""

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        *,
        client: Client | None = None,
    ) -> None:
        self._url = url if url is not None else settings.supabase_url
        self._key = key if key is not None else settings.supabase_key
        self._client = client
        self._lock = asyncio.Lock()

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def enabled(self) -> bool:
        """Return whether a client exists or can be built from configuration."""

        if self._client is not None:
            return True
        return bool(self._url and self._key) and not self._uses_placeholders()

    def _uses_placeholders(self) -> bool:
        return self._url in PLACEHOLDER_VALUES or self._key in PLACEHOLDER_VALUES

    def _ensure_client(self) -> Client:
        if self._client is not None:
            return self._client
        if not self._url or not self._key:
            raise StoreError(
                ErrorKind.CONFIGURATION,
                "Missing Supabase configuration. Set SUPABASE_URL and SUPABASE_ANON_KEY",
            )
        if self._uses_placeholders():
            raise StoreError(
                ErrorKind.CONFIGURATION,
                "Please update configuration with your actual Supabase credentials",
            )
        self._client = create_client(self._url, self._key)
        return self._client

    async def _execute(self, fn: Callable[[Client], Any]) -> Any:
        async with self._lock:
            try:
                client = self._ensure_client()
                return await asyncio.to_thread(fn, client)
            except StoreError:
                raise
            except APIError as exc:
                raise classify_api_error(exc) from exc
            except httpx.HTTPError as exc:
                raise StoreError(ErrorKind.UNREACHABLE, str(exc)) from exc
            except Exception as exc:
                logger.exception("Supabase operation failed")
                raise StoreError(ErrorKind.UNKNOWN, str(exc)) from exc

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[dict[str, Any]] = None,
        exclude: Optional[dict[str, Any]] = None,
        within: Optional[dict[str, Iterable[Any]]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        single: bool = False,
    ) -> Any:
        """Select rows; ``single`` returns one row or raises ``NOT_FOUND``."""

        def run(client: Client) -> Any:
            query = client.table(table).select(columns)
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            for column, value in (exclude or {}).items():
                query = query.neq(column, value)
            for column, values in (within or {}).items():
                query = query.in_(column, list(values))
            if order:
                query = query.order(order)
            if limit is not None:
                query = query.limit(limit)
            if single:
                query = query.single()
            return query.execute()

        response = await self._execute(run)
        return response.data

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        response = await self._execute(lambda client: client.table(table).insert(rows).execute())
        return response.data or []

    async def upsert(
        self, table: str, rows: list[dict[str, Any]], *, on_conflict: str
    ) -> list[dict[str, Any]]:
        """Insert rows, updating existing ones that collide on ``on_conflict``."""

        response = await self._execute(
            lambda client: client.table(table)
            .upsert(rows, on_conflict=on_conflict, ignore_duplicates=False)
            .execute()
        )
        return response.data or []

    async def update(
        self, table: str, values: dict[str, Any], *, filters: dict[str, Any]
    ) -> list[dict[str, Any]]:
        def run(client: Client) -> Any:
            query = client.table(table).update(values)
            for column, value in filters.items():
                query = query.eq(column, value)
            return query.execute()

        response = await self._execute(run)
        return response.data or []

    async def rpc(self, name: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Call a server-side procedure and return its result value."""

        response = await self._execute(lambda client: client.rpc(name, params or {}).execute())
        return response.data

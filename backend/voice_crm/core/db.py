"""Record store used by the call and lead pipeline.

``RecordStore`` is the persistence surface the pipeline codes against:
per-table select/insert/update/upsert/delete with equality, OR-equality across key
columns, in-list, range and null filters. ``SupabaseRecordStore`` is the
production implementation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from postgrest.exceptions import APIError
from supabase import ClientOptions, create_client

from .config import Settings

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

Filters = Optional[Dict[str, Any]]


class StoreError(Exception):
    """Raised when a record store operation fails."""


class DuplicateRecordError(StoreError):
    """Raised when an insert collides with a unique constraint."""


class RecordStore:
    """Base class for record stores."""

    async def select(
        self,
        table: str,
        *,
        eq: Filters = None,
        or_eq: Filters = None,
        in_: Optional[Dict[str, Sequence[Any]]] = None,
        gte: Filters = None,
        lte: Filters = None,
        is_null: Optional[Dict[str, bool]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Select rows.

        Args:
            table: Table name
            eq: Column equality filters, all must match
            or_eq: Column equality filters, any may match
            in_: Column membership filters
            gte: Lower bounds (inclusive)
            lte: Upper bounds (inclusive)
            is_null: Columns that must be null (True) or not null (False)
            order_by: Column to order by
            desc: Sort descending
            limit: Maximum rows returned

        Returns:
            Matching rows
        """
        raise NotImplementedError

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored.

        Raises:
            DuplicateRecordError: If the row violates a unique constraint
        """
        raise NotImplementedError

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        eq: Filters = None,
        or_eq: Filters = None,
    ) -> List[Dict[str, Any]]:
        """Update matching rows and return them."""
        raise NotImplementedError

    async def upsert(self, table: str, row: Dict[str, Any], *, on_conflict: str) -> Dict[str, Any]:
        """Insert or update on conflict with the given comma-separated columns."""
        raise NotImplementedError

    async def delete(self, table: str, *, eq: Filters = None) -> List[Dict[str, Any]]:
        """Delete rows matching every equality filter and return them."""
        raise NotImplementedError

    async def select_one(self, table: str, **filters: Any) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, limit=1, **filters)
        return rows[0] if rows else None


def _or_clause(or_eq: Dict[str, Any]) -> str:
    """Build a PostgREST ``or`` filter such as ``vapi_call_id.eq.X,id.eq.X``."""
    parts = []
    for column, value in or_eq.items():
        text = str(value)
        if any(ch in text for ch in ',()"'):
            text = '"' + text.replace('"', '\\"') + '"'
        parts.append(f"{column}.eq.{text}")
    return ",".join(parts)


class SupabaseRecordStore(RecordStore):
    """Record store backed by the Supabase PostgREST client.

    The Supabase client is synchronous, so every request runs in a worker
    thread to keep the event loop free.
    """

    def __init__(self, settings: Settings, client: Any = None):
        self.client = client or create_client(
            settings.supabase_url,
            settings.supabase_key,
            options=ClientOptions(schema=settings.supabase_schema),
        )

    @staticmethod
    def _apply_filters(
        query: Any,
        eq: Filters,
        or_eq: Filters,
        in_: Any = None,
        gte: Filters = None,
        lte: Filters = None,
        is_null: Optional[Dict[str, bool]] = None,
    ) -> Any:
        for column, value in (eq or {}).items():
            query = query.eq(column, value)
        if or_eq:
            query = query.or_(_or_clause(or_eq))
        for column, values in (in_ or {}).items():
            query = query.in_(column, list(values))
        for column, value in (gte or {}).items():
            query = query.gte(column, value)
        for column, value in (lte or {}).items():
            query = query.lte(column, value)
        for column, null in (is_null or {}).items():
            query = query.is_(column, "null") if null else query.not_.is_(column, "null")
        return query

    async def _execute(self, table: str, operation: str, query: Any) -> List[Dict[str, Any]]:
        try:
            response = await asyncio.to_thread(query.execute)
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateRecordError(f"{operation} on {table}: {e.message}") from e
            raise StoreError(f"{operation} on {table} failed: {e.message}") from e
        except Exception as e:
            raise StoreError(f"{operation} on {table} failed: {e}") from e
        return list(response.data or [])

    async def select(
        self,
        table: str,
        *,
        eq: Filters = None,
        or_eq: Filters = None,
        in_: Optional[Dict[str, Sequence[Any]]] = None,
        gte: Filters = None,
        lte: Filters = None,
        is_null: Optional[Dict[str, bool]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = self._apply_filters(self.client.table(table).select("*"), eq, or_eq, in_, gte, lte, is_null)
        if order_by:
            query = query.order(order_by, desc=desc)
        if limit:
            query = query.limit(limit)
        return await self._execute(table, "select", query)

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._execute(table, "insert", self.client.table(table).insert(row))
        return rows[0] if rows else row

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        eq: Filters = None,
        or_eq: Filters = None,
    ) -> List[Dict[str, Any]]:
        if not eq and not or_eq:
            raise StoreError(f"Refusing unfiltered update on {table}")
        query = self._apply_filters(self.client.table(table).update(values), eq, or_eq)
        return await self._execute(table, "update", query)

    async def upsert(self, table: str, row: Dict[str, Any], *, on_conflict: str) -> Dict[str, Any]:
        rows = await self._execute(
            table, "upsert", self.client.table(table).upsert(row, on_conflict=on_conflict)
        )
        return rows[0] if rows else row

    async def delete(self, table: str, *, eq: Filters = None) -> List[Dict[str, Any]]:
        if not eq:
            raise StoreError(f"Refusing unfiltered delete on {table}")
        query = self._apply_filters(self.client.table(table).delete(), eq, None)
        return await self._execute(table, "delete", query)


_store: Optional[RecordStore] = None


def get_store(settings: Settings) -> RecordStore:
    """Get or create the global record store."""
    global _store
    if _store is None:
        _store = SupabaseRecordStore(settings)
        logger.info("✅ Supabase record store initialized")
    return _store


def close_store() -> None:
    global _store
    _store = None

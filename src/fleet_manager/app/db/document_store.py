"""Supabase-backed document store.

Implements the DocumentStore protocol using SupabaseClient for PostgREST
operations against the fleet.storage_objects table:

    collection text, key text, value jsonb, update_time timestamptz,
    primary key (collection, key)

Query terms become PostgREST filters on JSON paths inside ``value``.
Equality compares the text projection (``->>``), matching the in-memory
store; boolean equality and range comparisons compare jsonb values
(``->``), which PostgreSQL orders numerically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from fleet_manager.app.instances.query import QueryTerm, decode_cursor, encode_cursor

from .supabase_client import PostgrestFilter, SupabaseClient

TABLE = "fleet.storage_objects"

_RANGE_OPS = {">": "gt", ">=": "gte", "<": "lt", "<=": "lte"}

# Document fields holding JSON arrays; equality means membership.
ARRAY_PATHS = frozenset({"reservation.reservations", "reservation.connections"})


def json_path(path: str, *, as_text: bool) -> str:
    """``reservation.available_seats`` -> ``value->reservation->available_seats``."""
    segments = path.split(".")
    head = "".join(f"->{segment}" for segment in segments[:-1])
    arrow = "->>" if as_text else "->"
    return f"value{head}{arrow}{segments[-1]}"


def term_to_filter(term: QueryTerm) -> PostgrestFilter:
    prefix = "not." if term.negate else ""
    if term.op in _RANGE_OPS:
        return PostgrestFilter(
            json_path(term.path, as_text=False), f"{prefix}{_RANGE_OPS[term.op]}", term.value,
        )
    if term.path in ARRAY_PATHS:
        return PostgrestFilter(json_path(term.path, as_text=False), f"{prefix}cs", [term.value])
    if isinstance(term.value, bool):
        return PostgrestFilter(json_path(term.path, as_text=False), f"{prefix}eq", term.value)
    return PostgrestFilter(json_path(term.path, as_text=True), f"{prefix}eq", term.value)


def _key_filters(collection: str, key: str) -> list[PostgrestFilter]:
    return [PostgrestFilter("collection", "eq", collection), PostgrestFilter("key", "eq", key)]


def sort_to_order(sort: Sequence[str]) -> str:
    parts = []
    for key in sort:
        direction = "desc" if key.startswith("-") else "asc"
        parts.append(f"{json_path(key.lstrip('-'), as_text=False)}.{direction}.nullslast")
    return ",".join(parts)


class SupabaseDocumentStore:
    """Keyed JSON documents backed by Supabase PostgREST.

    Satisfies the ``DocumentStore`` protocol from ``protocols.py``.
    """

    def __init__(self, client: SupabaseClient, *, table: str = TABLE) -> None:
        self._client = client
        self._table = table

    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        row = {
            "collection": collection,
            "key": key,
            "value": value,
            "update_time": datetime.now(timezone.utc).isoformat(),
        }
        await self._client.upsert(self._table, row)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        rows = await self._client.select(
            self._table,
            filters=_key_filters(collection, key),
            columns="value",
            limit=1,
        )
        return rows[0]["value"] if rows else None

    async def query(
        self,
        collection: str,
        terms: Sequence[QueryTerm],
        *,
        sort: Sequence[str],
        limit: int,
        cursor: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        offset = decode_cursor(cursor)
        filters = [PostgrestFilter("collection", "eq", collection)]
        filters.extend(term_to_filter(term) for term in terms)

        # One extra row tells us whether another page exists.
        rows = await self._client.select(
            self._table,
            filters=filters,
            columns="value",
            limit=limit + 1,
            offset=offset,
            order=sort_to_order(sort) if sort else None,
        )
        next_cursor = encode_cursor(offset + limit) if len(rows) > limit else None
        return [row["value"] for row in rows[:limit]], next_cursor

    async def delete(self, collection: str, key: str) -> None:
        await self._client.delete(
            self._table,
            filters=_key_filters(collection, key),
        )

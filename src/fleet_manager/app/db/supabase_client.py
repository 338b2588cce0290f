"""PostgREST access to the fleet document table in Supabase.

All fleet-manager traffic to Supabase goes through ``SupabaseClient``. It
authenticates with the service-role key and addresses tables in the
non-public ``fleet`` schema through the Accept-Profile / Content-Profile
headers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import httpx

from .errors import (
    StoreUnavailableError,
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)

_client: httpx.AsyncClient | None = None


def _pooled_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient()
    return _client


_ERRORS_BY_STATUS: dict[int, type[SupabaseError]] = {
    401: SupabaseAuthError,
    403: SupabaseAuthError,
    404: SupabaseNotFoundError,
    409: SupabaseConflictError,
}

_WRITE_METHODS = frozenset({"POST", "PATCH", "DELETE"})

# Operators whose operand is a JSON literal rather than a bare scalar.
_JSON_OPERAND_OPS = frozenset({"cs", "cd"})


@dataclass(frozen=True, slots=True)
class PostgrestFilter:
    """One ``column=op.value`` query parameter.

    ``column`` may be a JSON path such as ``value->>status``; ``op`` may be
    negated with a ``not.`` prefix.
    """

    column: str
    op: str
    value: Any

    def to_param(self) -> tuple[str, str]:
        base_op = self.op.removeprefix("not.")
        if base_op in _JSON_OPERAND_OPS:
            operand = json.dumps(self.value, separators=(",", ":"))
        elif isinstance(self.value, bool):
            operand = "true" if self.value else "false"
        elif self.value is None:
            raise ValueError(f"filter on {self.column} has no value")
        else:
            operand = str(self.value)
        return self.column, f"{self.op}.{operand}"


def _qualified(table: str) -> tuple[str, str | None]:
    """``fleet.storage_objects`` -> (``storage_objects``, ``fleet``)."""
    schema, dot, name = table.partition(".")
    if not dot:
        return table, None
    return name, schema


def _error_from_response(resp: httpx.Response) -> SupabaseError:
    fields: dict[str, Any] = {"message": resp.text or f"HTTP {resp.status_code}"}
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        fields["message"] = payload.get("message") or fields["message"]
        fields.update(
            code=payload.get("code"),
            details=payload.get("details"),
            hint=payload.get("hint"),
        )
    err_cls = _ERRORS_BY_STATUS.get(resp.status_code, SupabaseError)
    return err_cls(status_code=resp.status_code, **fields)


class SupabaseClient:
    """Service-role PostgREST client returning row lists."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._rest_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self._key = service_role_key
        self._http = http_client or _pooled_client()
        self._timeout = float(timeout_seconds)

    def _headers(self, method: str, schema: str | None, prefer: str | None) -> dict[str, str]:
        # Carries the service-role key; keep out of logs and errors.
        headers = {"apikey": self._key, "Authorization": f"Bearer {self._key}"}
        if schema:
            headers["Accept-Profile"] = schema
            if method in _WRITE_METHODS:
                headers["Content-Profile"] = schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _call(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        body: Any | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        name, schema = _qualified(table)
        try:
            resp = await self._http.request(
                method,
                f"{self._rest_url}/{name}",
                params=params or None,
                json=body,
                headers=self._headers(method, schema, prefer),
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise StoreUnavailableError(f"{method} {name}: {exc}") from exc

        if resp.status_code >= 400:
            raise _error_from_response(resp)
        rows = resp.json()
        if not isinstance(rows, list):
            raise SupabaseError(
                status_code=resp.status_code,
                message=f"{method} {name} did not return a row list",
            )
        return rows

    async def select(
        self,
        table: str,
        filters: Sequence[PostgrestFilter] = (),
        *,
        columns: str = "*",
        limit: int | None = None,
        offset: int = 0,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        params = [f.to_param() for f in filters]
        params.append(("select", columns))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        if order:
            params.append(("order", order))
        return await self._call("GET", table, params=params)

    async def upsert(self, table: str, row: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Insert ``row``, merging into an existing row on primary-key conflict."""
        return await self._call(
            "POST",
            table,
            body=dict(row),
            prefer="return=representation,resolution=merge-duplicates",
        )

    async def delete(
        self,
        table: str,
        filters: Sequence[PostgrestFilter],
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("refusing to delete without filters")
        return await self._call(
            "DELETE",
            table,
            params=[f.to_param() for f in filters],
            prefer="return=representation",
        )

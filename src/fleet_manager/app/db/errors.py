"""Errors raised by document store adapters.

They carry status, message and PostgREST diagnostics only, never the
request, the response object or credentials.
"""

from __future__ import annotations

from dataclasses import dataclass


class StoreError(Exception):
    """A document store read or write failed."""


class StoreUnavailableError(StoreError):
    """The store could not be reached (connect/read timeout, DNS, reset)."""


@dataclass(frozen=True, slots=True)
class SupabaseError(StoreError):
    """PostgREST answered with an error status."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:
        text = f"supabase {self.status_code}: {self.message}"
        if self.code:
            text += f" (code={self.code})"
        if self.details:
            text += f" {self.details}"
        return text


class SupabaseAuthError(SupabaseError):
    """401/403: bad service key or row-level security refusal."""


class SupabaseNotFoundError(SupabaseError):
    """404: the table or schema is not exposed."""


class SupabaseConflictError(SupabaseError):
    """409: unique or primary-key violation."""

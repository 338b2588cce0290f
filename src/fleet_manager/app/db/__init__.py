"""DB helpers for fleet-manager stores (Supabase, etc.)."""

from .document_store import SupabaseDocumentStore
from .errors import (
    StoreError,
    StoreUnavailableError,
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from .supabase_client import PostgrestFilter, SupabaseClient

__all__ = [
    "PostgrestFilter",
    "StoreError",
    "StoreUnavailableError",
    "SupabaseAuthError",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseDocumentStore",
    "SupabaseError",
    "SupabaseNotFoundError",
]

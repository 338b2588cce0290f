"""Adapter protocol interfaces for dependency injection.

These protocols define the contracts that concrete implementations (InMemory
for local dev and tests, Supabase/Edgegap for non-local) must satisfy. The
app factory accepts any implementation that matches these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from .instances.query import QueryTerm


@dataclass(frozen=True, slots=True)
class DeploymentRequest:
    """The fabric's acknowledgement of a deployment request."""

    request_id: str
    message: str = ''


@runtime_checkable
class DocumentStore(Protocol):
    """Keyed JSON documents grouped into collections.

    ``query`` returns one page of matching documents plus an opaque cursor
    for the next page (``None`` when exhausted). Deleting a missing key is
    not an error.
    """

    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None: ...
    async def get(self, collection: str, key: str) -> dict[str, Any] | None: ...
    async def query(
        self,
        collection: str,
        terms: Sequence[QueryTerm],
        *,
        sort: Sequence[str],
        limit: int,
        cursor: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]: ...
    async def delete(self, collection: str, key: str) -> None: ...


@runtime_checkable
class ProvisioningClient(Protocol):
    """Remote game-server fabric (deploy, stop, enumerate)."""

    async def create_deployment(
        self,
        location_hints: Sequence[str],
        metadata: dict[str, Any],
    ) -> DeploymentRequest: ...
    async def stop_deployment(self, request_id: str) -> str: ...
    async def list_deployments(self) -> list[str]: ...


@runtime_checkable
class LocationResolver(Protocol):
    """Maps user ids to network locations (IP addresses) for placement."""

    async def resolve(self, user_ids: Sequence[str]) -> list[str]: ...

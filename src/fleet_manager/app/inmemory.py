"""In-memory adapter implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the protocol interfaces
but store everything in dicts (no persistence across restarts).
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Sequence

from .instances.query import (
    QueryTerm,
    decode_cursor,
    encode_cursor,
    matches,
    sort_documents,
)
from .protocols import DeploymentRequest


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        value = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

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
        docs = [
            doc for doc in self._collections.get(collection, {}).values()
            if matches(terms, doc)
        ]
        ordered = sort_documents(docs, sort)
        page = ordered[offset:offset + limit]
        next_cursor = None
        if offset + limit < len(ordered):
            next_cursor = encode_cursor(offset + limit)
        return [copy.deepcopy(dict(doc)) for doc in page], next_cursor

    async def delete(self, collection: str, key: str) -> None:
        self._collections.get(collection, {}).pop(key, None)


class InMemoryProvisioningClient:
    """Fake fabric that accepts every deployment.

    ``requests`` and ``stopped`` record calls for assertions; setting
    ``fail_create`` / ``fail_stop`` to an exception makes the next matching
    call raise it.
    """

    def __init__(self) -> None:
        self.deployments: dict[str, dict[str, Any]] = {}
        self.requests: list[dict[str, Any]] = []
        self.stopped: list[str] = []
        self.fail_create: Exception | None = None
        self.fail_stop: Exception | None = None

    async def create_deployment(
        self,
        location_hints: Sequence[str],
        metadata: dict[str, Any],
    ) -> DeploymentRequest:
        self.requests.append({"location_hints": list(location_hints), "metadata": metadata})
        if self.fail_create is not None:
            exc, self.fail_create = self.fail_create, None
            raise exc
        request_id = uuid.uuid4().hex[:12]
        self.deployments[request_id] = {"ready": False, "location_hints": list(location_hints)}
        return DeploymentRequest(request_id=request_id, message="Request accepted")

    async def stop_deployment(self, request_id: str) -> str:
        self.stopped.append(request_id)
        if self.fail_stop is not None:
            exc, self.fail_stop = self.fail_stop, None
            raise exc
        self.deployments.pop(request_id, None)
        return f"Deployment {request_id} stopping"

    async def list_deployments(self) -> list[str]:
        return list(self.deployments)


class InMemoryLocationResolver:
    def __init__(self, locations: dict[str, str] | None = None) -> None:
        self._locations: dict[str, str] = dict(locations or {})

    def set_location(self, user_id: str, ip_address: str) -> None:
        self._locations[user_id] = ip_address

    async def resolve(self, user_ids: Sequence[str]) -> list[str]:
        return [self._locations[uid] for uid in user_ids if self._locations.get(uid)]

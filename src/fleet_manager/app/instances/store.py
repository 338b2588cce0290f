"""Instance persistence over a ``DocumentStore``.

Every write goes through ``save()``, which reconciles the seat ledger first,
so the cached counters and ``player_count`` are always consistent with the
reservation and connection sets on disk. Store and decoding failures
surface as ``PersistenceError``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from fleet_manager.app.db.errors import StoreError

from . import ledger
from .errors import InvalidInputError, PersistenceError
from .models import Instance
from .query import DEFAULT_SORT, parse_query

if TYPE_CHECKING:
    from fleet_manager.app.protocols import DocumentStore

logger = logging.getLogger(__name__)

COLLECTION = 'fleet_instances'
DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 100


class InstanceStore:
    """Typed instance records on top of a keyed document store."""

    def __init__(
        self,
        documents: DocumentStore,
        *,
        collection: str = COLLECTION,
    ) -> None:
        self._documents = documents
        self._collection = collection

    async def save(self, instance: Instance) -> Instance:
        """Reconcile and write the full record (last write wins)."""
        ledger.reconcile(instance)
        try:
            await self._documents.put(
                self._collection, instance.id, instance.to_document(),
            )
        except StoreError as exc:
            raise PersistenceError(
                f'failed to write instance {instance.id!r}: {exc}'
            ) from exc
        return instance

    async def get(self, instance_id: str) -> Instance | None:
        try:
            document = await self._documents.get(self._collection, instance_id)
        except StoreError as exc:
            raise PersistenceError(
                f'failed to read instance {instance_id!r}: {exc}'
            ) from exc
        if document is None:
            return None
        return self._decode(document)

    async def delete(self, instance_id: str) -> None:
        try:
            await self._documents.delete(self._collection, instance_id)
        except StoreError as exc:
            raise PersistenceError(
                f'failed to delete instance {instance_id!r}: {exc}'
            ) from exc

    async def list(
        self,
        query: str | None = None,
        *,
        limit: int = DEFAULT_LIST_LIMIT,
        cursor: str | None = None,
    ) -> tuple[list[Instance], str | None]:
        """One page of instances matching ``query``.

        Ordered by fewest players first, then newest first.
        """
        if limit < 1 or limit > MAX_LIST_LIMIT:
            raise InvalidInputError(
                f'limit must be between 1 and {MAX_LIST_LIMIT}'
            )
        terms = parse_query(query)
        try:
            documents, next_cursor = await self._documents.query(
                self._collection,
                terms,
                sort=DEFAULT_SORT,
                limit=limit,
                cursor=cursor,
            )
        except StoreError as exc:
            raise PersistenceError(f'failed to list instances: {exc}') from exc
        return [self._decode(doc) for doc in documents], next_cursor

    async def list_all(self, query: str | None = None) -> list[Instance]:
        """Every matching instance, following cursors to the end."""
        instances: list[Instance] = []
        cursor: str | None = None
        while True:
            page, cursor = await self.list(query, limit=MAX_LIST_LIMIT, cursor=cursor)
            instances.extend(page)
            if not cursor:
                return instances

    def _decode(self, document: dict) -> Instance:
        try:
            return Instance.from_document(document)
        except ValidationError as exc:
            logger.error(
                "Stored instance record failed validation: %s",
                exc,
                extra={"instance_id": document.get('id')},
            )
            raise PersistenceError(
                f'stored instance {document.get("id")!r} is malformed'
            ) from exc

"""Instance lifecycle engine.

Orchestrates the seat ledger, the instance store, the provisioning fabric
and the create-callback registry for locally requested operations
(create, get, list, join, update, delete). Inbound fabric and game-server
reports are handled by ``events.InstanceEventHandler`` on top of this
engine.

Every mutation is read-reconcile-write on a single record. There is no
locking or compare-and-set: the last write for an instance wins.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Sequence

from fleet_manager.observability.metrics import JOIN_REJECTIONS_TOTAL

from . import ledger
from .callbacks import CallbackRegistry, CreateCallback, CreateOutcome
from .errors import (
    DeploymentNotFoundError,
    FleetError,
    InstanceNotFoundError,
    InvalidInputError,
    ProvisioningError,
)
from .models import (
    RESERVED_METADATA_KEY,
    Instance,
    InstanceStatus,
    JoinResult,
    utc_now,
)
from .store import DEFAULT_LIST_LIMIT, InstanceStore

if TYPE_CHECKING:
    from fleet_manager.app.protocols import LocationResolver, ProvisioningClient

logger = logging.getLogger(__name__)


class CreateTimeoutError(TimeoutError):
    """Delivered to a create handler when the caller stops waiting."""


class LifecycleEngine:
    """Local operations on instances and their seat ledgers."""

    def __init__(
        self,
        store: InstanceStore,
        provisioning: ProvisioningClient,
        callbacks: CallbackRegistry,
        location_resolver: LocationResolver,
        *,
        port_name: str = 'gameport',
    ) -> None:
        self.store = store
        self.provisioning = provisioning
        self.callbacks = callbacks
        self.location_resolver = location_resolver
        self.port_name = port_name

    # ── Create ───────────────────────────────────────────────────────

    async def create(
        self,
        max_players: int,
        user_ids: Sequence[str],
        metadata: dict[str, Any] | None,
        callback: CreateCallback,
        *,
        caller_location: str | None = None,
    ) -> str:
        """Request a new instance and return its id.

        Returns once the fabric accepted the request. The outcome (ready,
        failed or timed out) is delivered later to ``callback``.

        Raises:
            InvalidInputError: before any I/O, for malformed arguments.
            ProvisioningError: the fabric rejected the request.
            PersistenceError: the accepted instance could not be stored.

        Every error raised after the callback was registered has already
        been delivered to ``callback`` as an ``ERROR`` outcome.
        """
        metadata = dict(metadata or {})
        users = _validate_create(max_players, user_ids, metadata, callback)

        callback_id = self.callbacks.generate_id()
        self.callbacks.register(callback_id, callback)

        try:
            hints = await self.location_resolver.resolve(users)
            if not hints and caller_location:
                hints = [caller_location]
            if not hints:
                raise InvalidInputError(
                    'no location hints resolved for user ids and no caller location'
                )

            deployment = await self.provisioning.create_deployment(hints, metadata)
            logger.info(
                "Deployment %s accepted: %s",
                deployment.request_id,
                deployment.message,
                extra={"instance_id": deployment.request_id, "callback_id": callback_id},
            )

            instance = Instance(
                id=deployment.request_id,
                status=InstanceStatus.REQUESTED,
                create_time=utc_now(),
                metadata=metadata,
                reservation=ledger.new_ledger(
                    max_players=max_players,
                    user_ids=users,
                    callback_id=callback_id,
                ),
            )
            await self.store.save(instance)
        except FleetError as exc:
            logger.warning(
                "Create failed: %s",
                exc,
                extra={"callback_id": callback_id},
            )
            self.callbacks.resolve(callback_id, CreateOutcome.ERROR, error=exc)
            raise
        except Exception as exc:
            logger.exception(
                "Create failed unexpectedly",
                extra={"callback_id": callback_id},
            )
            self.callbacks.resolve(callback_id, CreateOutcome.ERROR, error=exc)
            raise

        return instance.id

    def expire_create(self, callback_id: str, *, reason: str = '') -> bool:
        """Deliver a caller-armed timeout for a pending create.

        Returns ``False`` when the create already resolved.
        """
        error = CreateTimeoutError(reason or f'create {callback_id} timed out')
        return self.callbacks.resolve(callback_id, CreateOutcome.TIMEOUT, error=error)

    # ── Read ─────────────────────────────────────────────────────────

    async def get(self, instance_id: str) -> Instance | None:
        if not instance_id:
            raise InvalidInputError('expects id')
        return await self.store.get(instance_id)

    async def list(
        self,
        query: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        cursor: str | None = None,
    ) -> tuple[list[Instance], str | None]:
        return await self.store.list(query, limit=limit, cursor=cursor)

    # ── Mutations ────────────────────────────────────────────────────

    async def join(self, instance_id: str, user_ids: Sequence[str]) -> JoinResult:
        """Reserve seats on an existing instance."""
        try:
            if not instance_id:
                raise InvalidInputError('expects id')
            if not user_ids:
                raise InvalidInputError(
                    'expects user_ids to have at least one valid user id'
                )
            instance = await self._load(instance_id)
            added = ledger.join(
                instance.reservation,
                instance.player_count,
                user_ids,
                instance_id=instance_id,
            )
        except FleetError as exc:
            JOIN_REJECTIONS_TOTAL.labels(reason=exc.code).inc()
            raise

        await self.store.save(instance)
        logger.info(
            "Reserved %d seat(s) on %s",
            len(added),
            instance_id,
            extra={"instance_id": instance_id},
        )
        return JoinResult(instance=instance)

    async def update(self, instance_id: str, player_count: int) -> Instance:
        """Advisory player-count overwrite.

        ``player_count`` is derived from live connections, so the stored
        value is recomputed on write and the supplied count only shows up
        in the log.
        """
        if not instance_id:
            raise InvalidInputError('expects id')
        if isinstance(player_count, bool) or not isinstance(player_count, int) or player_count < 0:
            raise InvalidInputError('player_count must be a non-negative integer')

        instance = await self._load(instance_id)
        logger.warning(
            "Explicit player count update for %s (%d reported, %d connected); "
            "player_count follows connection reports",
            instance_id,
            player_count,
            len(instance.reservation.connections),
            extra={"instance_id": instance_id},
        )
        instance.player_count = player_count
        return await self.store.save(instance)

    async def delete(self, instance_id: str) -> None:
        """Stop the deployment, then drop the local record.

        A deployment the fabric no longer knows is treated as stopped. Any
        other fabric failure leaves the record in place.
        """
        if not instance_id:
            raise InvalidInputError('expects id')

        instance = await self.store.get(instance_id)
        try:
            message = await self.provisioning.stop_deployment(instance_id)
            logger.info(
                "Stop requested for %s: %s",
                instance_id,
                message,
                extra={"instance_id": instance_id},
            )
        except DeploymentNotFoundError:
            logger.info(
                "Deployment %s already gone; removing local record",
                instance_id,
                extra={"instance_id": instance_id},
            )
        except ProvisioningError:
            logger.error(
                "Stop failed for %s; keeping local record",
                instance_id,
                extra={"instance_id": instance_id},
            )
            raise

        await self.store.delete(instance_id)

        if instance is not None:
            self.abandon_create(instance, 'was deleted before it became ready')

    def abandon_create(self, instance: Instance, reason: str) -> bool:
        """Fail a still-pending create for a record that is going away.

        Returns ``False`` when the create had already resolved.
        """
        callback_id = instance.reservation.callback_id
        if not callback_id:
            return False
        return self.callbacks.resolve(
            callback_id,
            CreateOutcome.ERROR,
            instance=instance,
            error=ProvisioningError(f'instance {instance.id!r} {reason}'),
        )

    async def _load(self, instance_id: str) -> Instance:
        instance = await self.store.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance


def _validate_create(
    max_players: int,
    user_ids: Sequence[str],
    metadata: dict[str, Any],
    callback: CreateCallback,
) -> list[str]:
    if isinstance(max_players, bool) or not isinstance(max_players, int):
        raise InvalidInputError('max_players must be an integer')
    if not callable(callback):
        raise InvalidInputError('callback must be callable')
    if isinstance(user_ids, str):
        raise InvalidInputError('user_ids must be a list of user ids')
    if any(not isinstance(uid, str) or not uid.strip() for uid in user_ids):
        raise InvalidInputError('user ids must be non-empty strings')
    if RESERVED_METADATA_KEY in metadata:
        raise InvalidInputError(
            f'metadata key {RESERVED_METADATA_KEY!r} is reserved'
        )

    users = ledger.distinct(user_ids)
    if max_players >= 0 and len(users) > max_players:
        raise InvalidInputError(
            f'{len(users)} user ids exceed max_players={max_players}'
        )
    return users

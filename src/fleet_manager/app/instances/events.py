"""Inbound report models and handlers.

Three reporters write to an instance record:

- the provisioning fabric, through its deployment webhook
  (``DeploymentStatusReport``);
- the game server, reporting its full set of connected players
  (``ConnectionReport``);
- the game server, reporting lifecycle actions such as READY or STOP
  (``InstanceActionReport``).

Each handler is one logical unit: load, mutate, reconcile, persist. Side
effects that depend on the new state (resolving the pending create,
asking the fabric to stop) run only after the write succeeded.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fleet_manager.observability.metrics import (
    INSTANCE_OUT_OF_ORDER_TOTAL,
    INSTANCE_TRANSITIONS_TOTAL,
)

from . import ledger
from .callbacks import CreateOutcome
from .errors import DeploymentNotFoundError, ProvisioningError, UnknownInstanceError
from .models import RESERVED_METADATA_KEY, ConnectionInfo, Instance, InstanceStatus
from .state_machine import (
    SOURCE_DEPLOYMENT,
    SOURCE_INSTANCE,
    Transition,
    deployment_transition,
    instance_transition,
    is_expected_transition,
)

if TYPE_CHECKING:
    from .engine import LifecycleEngine

logger = logging.getLogger(__name__)


# ── Report models ────────────────────────────────────────────────────


def _require_id(value: str) -> str:
    value = (value or '').strip()
    if not value:
        raise ValueError('must be a non-empty id')
    return value


class _Report(BaseModel):
    model_config = ConfigDict(extra='ignore')


class DeploymentPort(_Report):
    external: int | None = None
    internal: int | None = None
    protocol: str | None = None
    name: str | None = None
    link: str | None = None


class DeploymentStatusReport(_Report):
    """Body of the fabric's deployment webhook."""

    request_id: str
    current_status: str | None = None
    public_ip: str | None = None
    fqdn: str | None = None
    ports: dict[str, DeploymentPort] | None = None
    running: bool = False
    error: bool = False
    error_detail: str | None = None

    @field_validator('request_id')
    @classmethod
    def check_request_id(cls, value: str) -> str:
        return _require_id(value)


class ConnectionReport(_Report):
    """The complete set of players currently connected to an instance."""

    instance_id: str
    connections: list[str] = Field(default_factory=list)

    @field_validator('instance_id')
    @classmethod
    def check_instance_id(cls, value: str) -> str:
        return _require_id(value)

    @field_validator('connections', mode='before')
    @classmethod
    def none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class InstanceActionReport(_Report):
    instance_id: str
    action: str = ''
    message: str = ''
    metadata: dict[str, Any] | None = None

    @field_validator('instance_id')
    @classmethod
    def check_instance_id(cls, value: str) -> str:
        return _require_id(value)

    @field_validator('action', 'message', mode='before')
    @classmethod
    def none_is_blank(cls, value: Any) -> Any:
        return '' if value is None else value


# ── Handlers ─────────────────────────────────────────────────────────


class InstanceEventHandler:
    """Applies inbound reports to instance records."""

    def __init__(self, engine: LifecycleEngine) -> None:
        self._engine = engine

    async def handle_deployment_event(self, report: DeploymentStatusReport) -> Instance:
        """Fabric placement report: RUNNING on ready, otherwise the create ends."""
        instance = await self._load(report.request_id, SOURCE_DEPLOYMENT)
        transition = deployment_transition(report.current_status, error=report.error)
        if (
            transition.to_status is InstanceStatus.RUNNING
            and instance.status is InstanceStatus.READY
        ):
            # The server already reported in; only refresh where to reach it.
            logger.info(
                "Late deployment report for ready instance %s; keeping READY",
                instance.id,
                extra={"instance_id": instance.id},
            )
        else:
            self._apply(instance, transition)

        if transition.to_status is InstanceStatus.RUNNING:
            instance.connection_info = self._connection_info(instance.id, report)
        elif transition.recognized:
            logger.warning(
                "Deployment %s failed: %s",
                instance.id,
                report.error_detail or report.current_status,
                extra={"instance_id": instance.id},
            )
        else:
            logger.error(
                "Deployment %s reported unrecognized status %r",
                instance.id,
                report.current_status,
                extra={"instance_id": instance.id},
            )

        await self._engine.store.save(instance)

        if transition.resolves_with_error:
            self._engine.callbacks.resolve(
                instance.reservation.callback_id,
                CreateOutcome.ERROR,
                instance=instance,
                error=ProvisioningError(
                    report.error_detail
                    or f'deployment {instance.id} ended with status {report.current_status!r}'
                ),
            )
        return instance

    async def handle_connection_event(self, report: ConnectionReport) -> Instance:
        """Replace the connection set; never changes ``status``."""
        instance = await self._load(report.instance_id, 'connection')
        ledger.apply_connections(instance.reservation, report.connections)
        await self._engine.store.save(instance)
        logger.debug(
            "Instance %s has %d connection(s), %d reservation(s)",
            instance.id,
            instance.player_count,
            instance.reservation.reservations_count,
            extra={"instance_id": instance.id},
        )
        return instance

    async def handle_instance_event(self, report: InstanceActionReport) -> Instance:
        """Game-server lifecycle report (READY / STOP / ERROR)."""
        instance = await self._load(report.instance_id, SOURCE_INSTANCE)
        transition = instance_transition(report.action)
        self._apply(instance, transition)

        if transition.to_status is InstanceStatus.READY:
            self._merge_metadata(instance, report.metadata or {})
        elif transition.to_status is InstanceStatus.ERROR:
            logger.warning(
                "Instance %s reported error: %s",
                instance.id,
                report.message,
                extra={"instance_id": instance.id},
            )
        elif not transition.recognized:
            logger.error(
                "Instance %s reported unrecognized action %r",
                instance.id,
                report.action,
                extra={"instance_id": instance.id},
            )

        await self._engine.store.save(instance)

        if transition.resolves_with_success:
            self._engine.callbacks.resolve(
                instance.reservation.callback_id,
                CreateOutcome.SUCCESS,
                instance=instance,
            )
        if transition.requests_stop:
            await self._request_stop(instance.id)
        return instance

    # ── Internals ────────────────────────────────────────────────────

    async def _load(self, instance_id: str, source: str) -> Instance:
        instance = await self._engine.store.get(instance_id)
        if instance is None:
            logger.error(
                "%s event for unknown instance %s",
                source,
                instance_id,
                extra={"instance_id": instance_id, "event_source": source},
            )
            raise UnknownInstanceError(instance_id, source=source)
        return instance

    def _apply(self, instance: Instance, transition: Transition) -> None:
        previous = instance.status
        if not is_expected_transition(previous, transition.to_status):
            logger.warning(
                "Out-of-order transition for %s: %s -> %s (%s report)",
                instance.id,
                previous.value,
                transition.to_status.value,
                transition.source,
                extra={"instance_id": instance.id, "event_source": transition.source},
            )
            INSTANCE_OUT_OF_ORDER_TOTAL.labels(
                source=transition.source,
                from_status=previous.value,
                to_status=transition.to_status.value,
            ).inc()
        INSTANCE_TRANSITIONS_TOTAL.labels(
            source=transition.source,
            status=transition.to_status.value,
        ).inc()
        instance.status = transition.to_status

    def _connection_info(self, instance_id: str, report: DeploymentStatusReport) -> ConnectionInfo:
        port_name = self._engine.port_name
        port = (report.ports or {}).get(port_name)
        if port is None:
            logger.warning(
                "Deployment %s reported no port named %r",
                instance_id,
                port_name,
                extra={"instance_id": instance_id},
            )
        return ConnectionInfo(
            ip_address=report.public_ip or '',
            dns_name=report.fqdn or '',
            port=port.external if port is not None else None,
        )

    def _merge_metadata(self, instance: Instance, incoming: dict[str, Any]) -> None:
        if RESERVED_METADATA_KEY in incoming:
            logger.warning(
                "Instance %s sent reserved metadata key %r; ignoring it",
                instance.id,
                RESERVED_METADATA_KEY,
                extra={"instance_id": instance.id},
            )
            incoming = {k: v for k, v in incoming.items() if k != RESERVED_METADATA_KEY}
        instance.metadata = {**instance.metadata, **incoming}

    async def _request_stop(self, instance_id: str) -> None:
        try:
            message = await self._engine.provisioning.stop_deployment(instance_id)
        except DeploymentNotFoundError:
            logger.info(
                "Deployment %s already gone",
                instance_id,
                extra={"instance_id": instance_id},
            )
            return
        logger.info(
            "Stop requested for %s: %s",
            instance_id,
            message,
            extra={"instance_id": instance_id},
        )

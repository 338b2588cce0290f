"""Error taxonomy for the instance lifecycle engine.

Every error carries a stable machine-readable ``code`` and the HTTP status
the API layer renders it with. Errors are scoped to a single instance
operation; nothing here is fatal to the process.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base class for all fleet-manager domain errors."""

    code: str = 'fleet_error'
    status_code: int = 500

    def __init__(self, message: str = '') -> None:
        self.message = message or self.code
        super().__init__(self.message)


class InvalidInputError(FleetError, ValueError):
    """Request is missing or carries malformed required fields."""

    code = 'invalid_input'
    status_code = 400


class InstanceNotFoundError(FleetError):
    """A local operation referenced an instance id with no record."""

    code = 'instance_not_found'
    status_code = 404

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f'instance {instance_id!r} not found')


class SeatLimitReachedError(FleetError):
    """A join would exceed the instance's ``max_players``."""

    code = 'seat_limit_reached'
    status_code = 409

    def __init__(
        self,
        instance_id: str,
        *,
        requested: int,
        available: int,
    ) -> None:
        self.instance_id = instance_id
        self.requested = requested
        self.available = available
        super().__init__(
            f'max players reservation limit reached for instance '
            f'{instance_id!r} (requested {requested}, available {available})'
        )


class ProvisioningError(FleetError):
    """The provisioning fabric rejected or failed a create/stop request."""

    code = 'provisioning_failed'
    status_code = 502


class DeploymentNotFoundError(ProvisioningError):
    """The fabric no longer knows the deployment (already stopped/gone)."""

    code = 'deployment_not_found'
    status_code = 404

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f'deployment {request_id!r} not found')


class PersistenceError(FleetError):
    """The instance store could not read or write a record."""

    code = 'persistence_failed'
    status_code = 503


class ProtocolViolationError(FleetError):
    """An inbound event does not fit the correlation protocol."""

    code = 'protocol_violation'
    status_code = 422


class UnknownInstanceError(ProtocolViolationError):
    """An inbound event references an instance id with no local record."""

    code = 'unknown_instance'
    status_code = 404

    def __init__(self, instance_id: str, *, source: str) -> None:
        self.instance_id = instance_id
        self.source = source
        super().__init__(
            f'no instance found with id {instance_id!r} ({source} event)'
        )


class DuplicateCallbackError(RuntimeError):
    """A callback id was registered twice while still pending."""

    def __init__(self, callback_id: str) -> None:
        self.callback_id = callback_id
        super().__init__(f'callback {callback_id!r} is already registered')

"""Instance lifecycle and seat-reservation engine."""

from .callbacks import CallbackRegistry, CreateOutcome, CreateResult, future_callback
from .engine import LifecycleEngine
from .errors import (
    DeploymentNotFoundError,
    FleetError,
    InstanceNotFoundError,
    InvalidInputError,
    PersistenceError,
    ProtocolViolationError,
    ProvisioningError,
    SeatLimitReachedError,
    UnknownInstanceError,
)
from .events import (
    ConnectionReport,
    DeploymentStatusReport,
    InstanceActionReport,
    InstanceEventHandler,
)
from .models import ConnectionInfo, Instance, InstanceStatus, JoinResult, SeatLedger
from .store import InstanceStore

__all__ = [
    "CallbackRegistry",
    "ConnectionInfo",
    "ConnectionReport",
    "CreateOutcome",
    "CreateResult",
    "DeploymentNotFoundError",
    "DeploymentStatusReport",
    "FleetError",
    "Instance",
    "InstanceActionReport",
    "InstanceEventHandler",
    "InstanceNotFoundError",
    "InstanceStatus",
    "InstanceStore",
    "InvalidInputError",
    "JoinResult",
    "LifecycleEngine",
    "PersistenceError",
    "ProtocolViolationError",
    "ProvisioningError",
    "SeatLedger",
    "SeatLimitReachedError",
    "UnknownInstanceError",
    "future_callback",
]

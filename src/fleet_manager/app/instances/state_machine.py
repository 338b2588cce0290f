"""Instance status state machine.

Canonical flow:
  REQUESTED -> RUNNING -> READY -> STOPPING -> (record removed)

with ERROR and UNKNOWN reachable from any non-terminal state.

Two sources write ``status``: the provisioning fabric (deployment reports,
which know network placement) and the game server itself (instance action
reports, which know application readiness). They disagree on timing, so an
instance can report READY before the fabric reports RUNNING. Transitions
outside ``ALLOWED_TRANSITIONS`` are therefore applied anyway and only
flagged as out of order.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from .models import InstanceStatus

DEPLOYMENT_STATUS_READY = 'READY'
DEPLOYMENT_STATUS_ERROR = 'ERROR'

INSTANCE_ACTION_READY = 'READY'
INSTANCE_ACTION_ERROR = 'ERROR'
INSTANCE_ACTION_STOP = 'STOP'

SOURCE_DEPLOYMENT = 'deployment'
SOURCE_INSTANCE = 'instance'

_ANY_LIVE = frozenset({InstanceStatus.ERROR, InstanceStatus.UNKNOWN})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        InstanceStatus.REQUESTED: frozenset({InstanceStatus.RUNNING}) | _ANY_LIVE,
        InstanceStatus.RUNNING: frozenset({InstanceStatus.READY, InstanceStatus.STOPPING}) | _ANY_LIVE,
        InstanceStatus.READY: frozenset({InstanceStatus.STOPPING}) | _ANY_LIVE,
        InstanceStatus.STOPPING: _ANY_LIVE,
        InstanceStatus.ERROR: frozenset({InstanceStatus.STOPPING}) | _ANY_LIVE,
        InstanceStatus.UNKNOWN: frozenset(InstanceStatus) - {InstanceStatus.REQUESTED},
    }
)


@dataclass(frozen=True, slots=True)
class Transition:
    """Target status for one inbound report.

    ``resolves_with_error`` marks reports that end the pending create call
    with an error outcome; ``resolves_with_success`` marks the single
    success exit of the create protocol.
    """

    source: str
    to_status: InstanceStatus
    raw_value: str
    resolves_with_error: bool = False
    resolves_with_success: bool = False
    requests_stop: bool = False

    @property
    def recognized(self) -> bool:
        return self.to_status is not InstanceStatus.UNKNOWN


def normalize_deployment_status(value: str) -> str:
    """``Status.READY`` / ``Ready`` / ``ready`` -> ``READY``."""
    value = (value or '').strip()
    if value.lower().startswith('status.'):
        value = value[len('status.'):]
    return value.upper()


def deployment_transition(current_status: str, *, error: bool = False) -> Transition:
    """Map a fabric deployment status to the next instance status.

    Anything other than a ready deployment ends the pending create call.
    """
    status = normalize_deployment_status(current_status)
    if error or status == DEPLOYMENT_STATUS_ERROR:
        return Transition(
            source=SOURCE_DEPLOYMENT,
            to_status=InstanceStatus.ERROR,
            raw_value=current_status,
            resolves_with_error=True,
        )
    if status == DEPLOYMENT_STATUS_READY:
        return Transition(
            source=SOURCE_DEPLOYMENT,
            to_status=InstanceStatus.RUNNING,
            raw_value=current_status,
        )
    return Transition(
        source=SOURCE_DEPLOYMENT,
        to_status=InstanceStatus.UNKNOWN,
        raw_value=current_status,
        resolves_with_error=True,
    )


def instance_transition(action: str) -> Transition:
    """Map a game-server action report to the next instance status."""
    normalized = (action or '').strip().upper()
    if normalized == INSTANCE_ACTION_READY:
        return Transition(
            source=SOURCE_INSTANCE,
            to_status=InstanceStatus.READY,
            raw_value=action,
            resolves_with_success=True,
        )
    if normalized == INSTANCE_ACTION_STOP:
        return Transition(
            source=SOURCE_INSTANCE,
            to_status=InstanceStatus.STOPPING,
            raw_value=action,
            requests_stop=True,
        )
    if normalized == INSTANCE_ACTION_ERROR:
        return Transition(
            source=SOURCE_INSTANCE,
            to_status=InstanceStatus.ERROR,
            raw_value=action,
        )
    return Transition(
        source=SOURCE_INSTANCE,
        to_status=InstanceStatus.UNKNOWN,
        raw_value=action,
    )


def is_expected_transition(
    from_status: InstanceStatus,
    to_status: InstanceStatus,
) -> bool:
    """Whether the move follows the canonical order.

    Re-entering the same status (duplicate or redelivered report) counts as
    expected.
    """
    if from_status is to_status:
        return True
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())

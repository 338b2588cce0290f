"""Unit tests for report-to-status mapping."""

import pytest

from fleet_manager.app.instances.models import InstanceStatus
from fleet_manager.app.instances.state_machine import (
    deployment_transition,
    instance_transition,
    is_expected_transition,
    normalize_deployment_status,
)


@pytest.mark.parametrize('raw', ['Status.READY', 'READY', 'ready', ' Ready '])
def test_normalize_deployment_status(raw):
    assert normalize_deployment_status(raw) == 'READY'


def test_ready_deployment_moves_to_running():
    transition = deployment_transition('Status.READY')
    assert transition.to_status is InstanceStatus.RUNNING
    assert not transition.resolves_with_error
    assert not transition.resolves_with_success


def test_error_deployment_resolves_with_error():
    transition = deployment_transition('Status.ERROR')
    assert transition.to_status is InstanceStatus.ERROR
    assert transition.resolves_with_error


def test_error_flag_wins_over_status():
    transition = deployment_transition('Status.READY', error=True)
    assert transition.to_status is InstanceStatus.ERROR


def test_unrecognized_deployment_status_is_unknown():
    transition = deployment_transition('Status.DEPLOYING')
    assert transition.to_status is InstanceStatus.UNKNOWN
    assert transition.resolves_with_error
    assert not transition.recognized


def test_instance_ready_is_the_success_exit():
    transition = instance_transition('READY')
    assert transition.to_status is InstanceStatus.READY
    assert transition.resolves_with_success
    assert not transition.requests_stop


def test_instance_stop_requests_stop():
    transition = instance_transition('stop')
    assert transition.to_status is InstanceStatus.STOPPING
    assert transition.requests_stop


def test_instance_error_does_not_resolve():
    transition = instance_transition('ERROR')
    assert transition.to_status is InstanceStatus.ERROR
    assert not transition.resolves_with_error
    assert not transition.resolves_with_success


@pytest.mark.parametrize('action', ['', 'BOGUS'])
def test_unknown_instance_action(action):
    assert instance_transition(action).to_status is InstanceStatus.UNKNOWN


@pytest.mark.parametrize(
    'from_status,to_status,expected',
    [
        (InstanceStatus.REQUESTED, InstanceStatus.RUNNING, True),
        (InstanceStatus.RUNNING, InstanceStatus.READY, True),
        (InstanceStatus.READY, InstanceStatus.STOPPING, True),
        (InstanceStatus.READY, InstanceStatus.READY, True),
        (InstanceStatus.REQUESTED, InstanceStatus.ERROR, True),
        (InstanceStatus.REQUESTED, InstanceStatus.READY, False),
        (InstanceStatus.READY, InstanceStatus.RUNNING, False),
        (InstanceStatus.STOPPING, InstanceStatus.READY, False),
    ],
)
def test_is_expected_transition(from_status, to_status, expected):
    assert is_expected_transition(from_status, to_status) is expected

"""Tests for logging processors and metric path normalization."""

from __future__ import annotations

import logging

from fleet_manager.observability.logging import (
    _add_request_id,
    _lift_stdlib_extra,
    request_id_ctx,
)
from fleet_manager.observability.metrics import metrics_text
from fleet_manager.observability.middleware import _normalize_path


def test_request_id_injected_from_context():
    token = request_id_ctx.set('req-12345678')
    try:
        event = _add_request_id(None, 'info', {'event': 'x'})
    finally:
        request_id_ctx.reset(token)
    assert event['request_id'] == 'req-12345678'


def test_request_id_absent_outside_request():
    assert 'request_id' not in _add_request_id(None, 'info', {'event': 'x'})


def test_stdlib_extra_fields_are_lifted():
    record = logging.LogRecord('fleet', logging.INFO, __file__, 1, 'msg', (), None)
    record.instance_id = 'abc123'
    record.callback_id = 'cb-1'

    event = _lift_stdlib_extra(None, 'info', {'event': 'msg', '_record': record})

    assert event['instance_id'] == 'abc123'
    assert event['callback_id'] == 'cb-1'
    assert 'event_source' not in event


def test_normalize_path():
    assert _normalize_path('/api/v1/sessions/abc') == '/api/v1/sessions/{id}'
    assert _normalize_path('/api/v1/sessions/abc/join') == '/api/v1/sessions/{id}/join'
    assert _normalize_path('/api/v1/sessions') == '/api/v1/sessions'
    assert _normalize_path('/api/v1/events/instance') == '/api/v1/events/instance'


def test_metrics_text_content_type():
    body, content_type = metrics_text()
    assert content_type.startswith('text/plain')
    assert b'fleet_instance_transitions_total' in body

"""HTTP tests for the inbound event webhooks."""

from __future__ import annotations

from fastapi.testclient import TestClient

from fleet_manager.app.inmemory import InMemoryLocationResolver
from fleet_manager.app.main import create_app
from fleet_manager.app.settings import FleetManagerSettings

HTTP_KEY = 'server-key'


def _setup() -> tuple[TestClient, str]:
    app = create_app(
        FleetManagerSettings(http_key=HTTP_KEY, background_sweeps=False),
        location_resolver=InMemoryLocationResolver({'alice': '10.0.0.1', 'bob': '10.0.0.2'}),
    )
    client = TestClient(app)
    resp = client.post('/api/v1/sessions', json={'max_players': 2, 'user_ids': ['alice', 'bob']})
    assert resp.status_code == 202
    return client, resp.json()['id']


def _post(client, path, body, key=HTTP_KEY):
    return client.post(path, json=body, params={'http_key': key})


def test_events_require_http_key():
    client, instance_id = _setup()

    for path in ('/api/v1/events/deployment', '/api/v1/events/connection', '/api/v1/events/instance'):
        resp = client.post(path, json={'instance_id': instance_id, 'request_id': instance_id})
        assert resp.status_code == 401


def test_full_lifecycle_over_http():
    client, instance_id = _setup()

    deployment = _post(client, '/api/v1/events/deployment', {
        'request_id': instance_id,
        'current_status': 'Status.READY',
        'public_ip': '198.51.100.4',
        'fqdn': 'abc.fleet.example',
        'ports': {'gameport': {'external': 31500, 'internal': 7777}},
        'running': True,
    })
    assert deployment.status_code == 200
    assert deployment.json() == {'ok': True, 'id': instance_id, 'status': 'RUNNING'}

    ready = _post(client, '/api/v1/events/instance', {
        'instance_id': instance_id, 'action': 'READY', 'metadata': {'map': 'dust'},
    })
    assert ready.json()['status'] == 'READY'

    connected = _post(client, '/api/v1/events/connection', {
        'instance_id': instance_id, 'connections': ['alice', 'bob'],
    })
    assert connected.status_code == 200

    instance = client.get(f'/api/v1/sessions/{instance_id}').json()
    assert instance['status'] == 'READY'
    assert instance['player_count'] == 2
    assert instance['metadata'] == {'map': 'dust'}
    assert instance['connection_info'] == {
        'ip_address': '198.51.100.4', 'dns_name': 'abc.fleet.example', 'port': 31500,
    }
    assert instance['reservation']['reservations'] == []
    assert instance['reservation']['available_seats'] == 0

    stop = _post(client, '/api/v1/events/instance', {'instance_id': instance_id, 'action': 'STOP'})
    assert stop.json()['status'] == 'STOPPING'
    assert instance_id in client.app.state.deps.provisioning.stopped


def test_event_for_unknown_instance_is_404():
    client, _ = _setup()

    resp = _post(client, '/api/v1/events/connection', {'instance_id': 'ghost', 'connections': []})

    assert resp.status_code == 404
    assert resp.json()['error'] == 'unknown_instance'


def test_malformed_event_is_422():
    client, _ = _setup()
    resp = _post(client, '/api/v1/events/instance', {'action': 'READY'})
    assert resp.status_code == 422

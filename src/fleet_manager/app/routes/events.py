"""Inbound event webhooks.

  POST /api/v1/events/deployment → fabric deployment status webhook
  POST /api/v1/events/connection → game server connected-player report
  POST /api/v1/events/instance   → game server lifecycle action

All endpoints require the shared ``http_key``. A report for an instance id
with no local record answers 404 so the sender can surface or redeliver it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fleet_manager.app.instances.events import (
    ConnectionReport,
    DeploymentStatusReport,
    InstanceActionReport,
    InstanceEventHandler,
)
from fleet_manager.app.instances.models import Instance

from .auth import require_http_key


def _ack(instance: Instance) -> dict:
    return {
        'ok': True,
        'id': instance.id,
        'status': instance.status.value,
    }


def create_events_router(handler: InstanceEventHandler, *, http_key: str = '') -> APIRouter:
    """Create the event webhook router.

    Args:
        handler: Applies each report to its instance record.
        http_key: Shared key every event call must carry.
    """
    router = APIRouter(
        tags=['events'],
        dependencies=[Depends(require_http_key(http_key))],
    )

    @router.post('/api/v1/events/deployment')
    async def deployment_event(report: DeploymentStatusReport):
        instance = await handler.handle_deployment_event(report)
        return _ack(instance)

    @router.post('/api/v1/events/connection')
    async def connection_event(report: ConnectionReport):
        instance = await handler.handle_connection_event(report)
        return _ack(instance)

    @router.post('/api/v1/events/instance')
    async def instance_event(report: InstanceActionReport):
        instance = await handler.handle_instance_event(report)
        return _ack(instance)

    return router

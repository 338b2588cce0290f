"""Game session API.

Client-facing:
  POST /api/v1/sessions                → request a new instance
  GET  /api/v1/sessions                → list instances (query, limit, cursor)
  GET  /api/v1/sessions/{instance_id}  → one instance
  POST /api/v1/sessions/{instance_id}/join → reserve seats

Server-only (require the shared http key):
  PATCH  /api/v1/sessions/{instance_id} → advisory player-count update
  DELETE /api/v1/sessions/{instance_id} → stop the deployment and forget it

``POST /api/v1/sessions`` returns 202 with the new id as soon as the fabric
accepts the request. With ``wait_seconds`` set it instead blocks until the
instance reports READY (201), the deployment fails (error status), or the
wait runs out (504).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fleet_manager.app.instances.callbacks import (
    CreateOutcome,
    CreateResult,
    future_callback,
)
from fleet_manager.app.instances.engine import LifecycleEngine
from fleet_manager.app.instances.errors import FleetError, InstanceNotFoundError
from fleet_manager.app.instances.models import UNLIMITED_PLAYERS, Instance
from fleet_manager.app.instances.store import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT

from .auth import require_http_key

logger = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 300.0


# ── Request schemas ───────────────────────────────────────────────────


class CreateSessionRequest(BaseModel):
    max_players: int = UNLIMITED_PLAYERS
    user_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    wait_seconds: float | None = Field(
        default=None,
        gt=0,
        le=MAX_WAIT_SECONDS,
        description='Block until the instance is ready, up to this many seconds.',
    )


class JoinSessionRequest(BaseModel):
    user_ids: list[str] = Field(default_factory=list)


class UpdateSessionRequest(BaseModel):
    player_count: int


# ── Response helpers ──────────────────────────────────────────────────


def _instance_response(instance: Instance) -> dict:
    return instance.model_dump(mode='json')


def _caller_location(request: Request) -> str | None:
    forwarded = request.headers.get('x-forwarded-for', '')
    if forwarded:
        return forwarded.split(',')[0].strip() or None
    return request.client.host if request.client else None


def _log_outcome(result: CreateResult) -> None:
    if result.ok:
        logger.info(
            "Create %s finished: instance %s ready",
            result.callback_id,
            result.instance.id if result.instance else '',
            extra={"callback_id": result.callback_id},
        )
    else:
        logger.warning(
            "Create %s finished with %s: %s",
            result.callback_id,
            result.outcome.value,
            result.error,
            extra={"callback_id": result.callback_id},
        )


def _outcome_response(instance_id: str, result: CreateResult) -> JSONResponse:
    if result.ok and result.instance is not None:
        return JSONResponse(status_code=201, content=_instance_response(result.instance))

    if result.outcome is CreateOutcome.TIMEOUT:
        status_code, code = 504, 'create_timeout'
    elif isinstance(result.error, FleetError):
        status_code, code = result.error.status_code, result.error.code
    else:
        status_code, code = 502, 'provisioning_failed'
    return JSONResponse(
        status_code=status_code,
        content={
            'error': code,
            'detail': str(result.error) if result.error else result.outcome.value,
            'id': instance_id,
        },
    )


# ── Route factory ─────────────────────────────────────────────────────


def create_sessions_router(engine: LifecycleEngine, *, http_key: str = '') -> APIRouter:
    """Create the game session router.

    Args:
        engine: Lifecycle engine all operations delegate to.
        http_key: Shared key required by the server-only routes.

    Returns:
        FastAPI router with session endpoints.
    """
    router = APIRouter(tags=['sessions'])
    server_only = Depends(require_http_key(http_key))

    @router.post('/api/v1/sessions')
    async def create_session(body: CreateSessionRequest, request: Request):
        wait = body.wait_seconds
        future: asyncio.Future[CreateResult] | None = None
        if wait:
            future = asyncio.get_running_loop().create_future()
            callback = future_callback(future)
        else:
            callback = _log_outcome

        instance_id = await engine.create(
            body.max_players,
            body.user_ids,
            body.metadata,
            callback,
            caller_location=_caller_location(request),
        )

        if future is None:
            return JSONResponse(
                status_code=202,
                content={'id': instance_id, 'status': 'REQUESTED'},
            )

        try:
            result = await asyncio.wait_for(asyncio.shield(future), timeout=wait)
        except asyncio.TimeoutError:
            instance = await engine.get(instance_id)
            reason = f'instance {instance_id} not ready after {wait:g}s'
            if instance is not None:
                engine.expire_create(instance.reservation.callback_id, reason=reason)
            if not future.done():
                future.set_result(CreateResult(
                    callback_id='',
                    outcome=CreateOutcome.TIMEOUT,
                    error=TimeoutError(reason),
                ))
            result = future.result()
        return _outcome_response(instance_id, result)

    @router.get('/api/v1/sessions')
    async def list_sessions(
        query: str | None = Query(default=None),
        limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
        cursor: str | None = Query(default=None),
    ):
        instances, next_cursor = await engine.list(query, limit, cursor)
        return {
            'instances': [_instance_response(i) for i in instances],
            'cursor': next_cursor or '',
        }

    @router.get('/api/v1/sessions/{instance_id}')
    async def get_session(instance_id: str):
        instance = await engine.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return _instance_response(instance)

    @router.post('/api/v1/sessions/{instance_id}/join')
    async def join_session(instance_id: str, body: JoinSessionRequest):
        result = await engine.join(instance_id, body.user_ids)
        return {
            'instance': _instance_response(result.instance),
            'sessions': result.sessions,
        }

    @router.patch('/api/v1/sessions/{instance_id}', dependencies=[server_only])
    async def update_session(instance_id: str, body: UpdateSessionRequest):
        instance = await engine.update(instance_id, body.player_count)
        return _instance_response(instance)

    @router.delete('/api/v1/sessions/{instance_id}', dependencies=[server_only])
    async def delete_session(instance_id: str):
        await engine.delete(instance_id)
        return Response(status_code=204)

    return router

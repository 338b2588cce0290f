"""Shared-key guard for server-to-server routes.

Game servers and the provisioning fabric authenticate with the fleet
manager's ``http_key``, passed as the ``http_key`` query parameter (the
form embedded in the event URLs handed to each deployment) or as the
``X-Http-Key`` header.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Header, Query
from fastapi.responses import JSONResponse

from fleet_manager.app.instances.errors import FleetError

logger = logging.getLogger(__name__)


class HttpKeyRejectedError(FleetError):
    code = 'invalid_http_key'
    status_code = 401


def require_http_key(expected: str):
    """Build a FastAPI dependency that checks the shared http key.

    An empty ``expected`` key disables the check (local development).
    """

    async def _check(
        http_key: str | None = Query(default=None),
        x_http_key: str | None = Header(default=None),
    ) -> None:
        if not expected:
            return
        supplied = http_key or x_http_key or ''
        if not hmac.compare_digest(supplied.encode(), expected.encode()):
            logger.warning("Rejected server call with missing or invalid http key")
            raise HttpKeyRejectedError('missing or invalid http_key')

    return _check


def error_response(exc: FleetError, request_id: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            'error': exc.code,
            'detail': exc.message,
            'request_id': request_id,
        },
    )

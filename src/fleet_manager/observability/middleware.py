"""HTTP middleware for request correlation and Prometheus metrics.

``RequestIdMiddleware`` assigns every request an id (a well-formed
``X-Request-ID`` from the caller is kept), exposes it to log records via
``request_id_ctx`` and ``request.state.request_id``, and returns it in the
response header.

``MetricsMiddleware`` counts requests and observes latency per method and
path template. Session ids are collapsed so the label set stays bounded.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import request_id_ctx
from .metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_FLIGHT,
    HTTP_REQUESTS_TOTAL,
)

REQUEST_ID_HEADER = "X-Request-ID"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9\-]{8,128}$")

_SESSION_PATH_RE = re.compile(r"^/api/v1/sessions/[^/]+(?P<tail>/join)?$")


def _normalize_path(path: str) -> str:
    match = _SESSION_PATH_RE.match(path)
    if match is None:
        return path
    return "/api/v1/sessions/{id}" + (match.group("tail") or "")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        supplied = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = supplied if _REQUEST_ID_RE.match(supplied) else uuid.uuid4().hex

        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        method = request.method
        path = _normalize_path(request.url.path)
        status = "500"

        HTTP_REQUESTS_IN_FLIGHT.inc()
        started = time.perf_counter()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            HTTP_REQUESTS_IN_FLIGHT.dec()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(
                time.perf_counter() - started,
            )
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status=status).inc()

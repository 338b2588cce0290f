"""Async HTTP client for the Edgegap deployment API.

Covers the four calls the fleet manager makes: request a deployment, stop
one, page through the account's deployments and look up the configured
application. The account token goes in the Authorization header as-is and
never leaves the fleet manager.

Transient failures (429 and 5xx, timeouts) are retried with jittered
exponential backoff, honouring Retry-After on 429. Deployment requests are
not idempotent, so a POST is only resent after a 429.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
_IDEMPOTENT_METHODS = frozenset({"GET", "DELETE"})


# ── Exception hierarchy ─────────────────────────────────────────


class EdgegapAPIError(Exception):
    """Edgegap answered with an error (or an unexpected success) status."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        *,
        response_body: str = "",
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Edgegap API error {status_code}: {message}")


class EdgegapNotFoundError(EdgegapAPIError):
    """Deployment or application not found (404)."""

    def __init__(self, message: str = "Not found", **kwargs: Any) -> None:
        super().__init__(404, message, **kwargs)


class EdgegapTimeoutError(EdgegapAPIError):
    """No response from Edgegap within the request timeout."""

    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(0, message)


def _error_for(resp: httpx.Response) -> EdgegapAPIError:
    body = resp.text
    message = body[:200] if body else f"HTTP {resp.status_code}"
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error") or message

    if resp.status_code == 404:
        return EdgegapNotFoundError(message=message, response_body=body)
    return EdgegapAPIError(resp.status_code, message, response_body=body)


# ── Retry policy ─────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def backoff(self, attempt: int) -> float:
        """Full-jitter exponential backoff for ``attempt`` (0-based)."""
        ceiling = min(self.base_delay * (2 ** attempt), self.max_delay)
        return random.uniform(0, ceiling)

    def delay_after(self, resp: httpx.Response, attempt: int) -> float:
        retry_after = resp.headers.get("retry-after")
        if retry_after:
            try:
                return max(float(retry_after), 0.1)
            except ValueError:
                logger.debug("Ignoring non-numeric Retry-After %r", retry_after)
        return self.backoff(attempt)

    def retries_status(self, method: str, status_code: int) -> bool:
        if status_code not in _RETRYABLE_STATUS_CODES:
            return False
        return method in _IDEMPOTENT_METHODS or status_code == 429


_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


# ── Client ───────────────────────────────────────────────────────


class EdgegapClient:
    """Thin async wrapper over the Edgegap REST endpoints."""

    def __init__(
        self,
        *,
        api_token: str,
        base_url: str = "https://api.edgegap.com",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ) -> None:
        if not api_token:
            raise ValueError("api_token is required")

        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._client = http_client or _get_shared_async_client()
        self._timeout = float(timeout_seconds)
        self._retry = RetryPolicy(max_retries, base_delay, max_delay)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        attempts = self._retry.max_retries + 1
        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                resp = await self._client.request(
                    method,
                    f"{self._base_url}{path}",
                    headers={"Authorization": self._api_token},
                    json=json,
                    params=params,
                    timeout=self._timeout,
                )
            except httpx.TimeoutException as exc:
                if last or method not in _IDEMPOTENT_METHODS:
                    raise EdgegapTimeoutError(str(exc)) from exc
                delay = self._retry.backoff(attempt)
                logger.warning(
                    "Edgegap %s %s timed out (attempt %d/%d), retrying in %.1fs",
                    method, path, attempt + 1, attempts, delay,
                )
                await asyncio.sleep(delay)
                continue

            if last or not self._retry.retries_status(method, resp.status_code):
                return resp

            delay = self._retry.delay_after(resp, attempt)
            logger.warning(
                "Edgegap %s %s returned %d (attempt %d/%d), retrying in %.1fs",
                method, path, resp.status_code, attempt + 1, attempts, delay,
            )
            await asyncio.sleep(delay)
        raise EdgegapAPIError(0, "exhausted retries with no response")

    # ── Endpoints ────────────────────────────────────────────────

    async def create_deployment(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a deployment request.

        Edgegap answers 202 Accepted with ``{"request_id", "message"}``;
        any other status, success or not, is a rejection.
        """
        resp = await self._send("POST", "/beta/deployments", json=payload)
        if resp.status_code != 202:
            if resp.status_code >= 400:
                raise _error_for(resp)
            raise EdgegapAPIError(
                resp.status_code,
                "deployment request was not accepted",
                response_body=resp.text,
            )

        result = resp.json()
        logger.info(
            "Deployment requested: request_id=%s",
            result.get("request_id"),
            extra={"instance_id": result.get("request_id")},
        )
        return result

    async def stop_deployment(self, request_id: str) -> dict[str, Any]:
        """Ask Edgegap to stop ``request_id``; 404 means it is already gone."""
        resp = await self._send("DELETE", f"/v1/stop/{request_id}")
        if resp.status_code >= 400:
            raise _error_for(resp)
        if resp.status_code not in (200, 202):
            raise EdgegapAPIError(
                resp.status_code,
                f"unexpected status stopping deployment {request_id}",
                response_body=resp.text,
            )
        try:
            return resp.json()
        except ValueError:
            return {}

    async def list_deployments(self, page: int = 1) -> dict[str, Any]:
        resp = await self._send("GET", "/v1/deployments", params={"page": str(page)})
        if resp.status_code >= 400:
            raise _error_for(resp)

        result = resp.json()
        if not isinstance(result, dict):
            raise EdgegapAPIError(
                0, f"expected an object from /v1/deployments, got {type(result).__name__}",
            )
        return result

    async def get_application(self, application: str) -> dict[str, Any]:
        resp = await self._send("GET", f"/v1/app/{application}")
        if resp.status_code >= 400:
            raise _error_for(resp)
        return resp.json()

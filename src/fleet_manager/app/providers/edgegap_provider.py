"""EdgegapProvisioningClient: ProvisioningClient backed by the Edgegap API.

Implements the ProvisioningClient protocol using EdgegapClient. Each
deployment is told where to report back: the fabric webhook goes to the
deployment event route, and the game server receives the connection and
instance event URLs (with the shared http key) plus the session metadata
as environment variables.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from fleet_manager.app.instances.errors import DeploymentNotFoundError, ProvisioningError
from fleet_manager.app.protocols import DeploymentRequest

from .edgegap_client import EdgegapAPIError, EdgegapClient, EdgegapNotFoundError

logger = logging.getLogger(__name__)

DEPLOYMENT_EVENT_PATH = "/api/v1/events/deployment"
CONNECTION_EVENT_PATH = "/api/v1/events/connection"
INSTANCE_EVENT_PATH = "/api/v1/events/instance"

ENV_CONNECTION_EVENT_URL = "FLEET_CONNECTION_EVENT_URL"
ENV_INSTANCE_EVENT_URL = "FLEET_INSTANCE_EVENT_URL"
ENV_SESSION_METADATA = "FLEET_SESSION_METADATA"

DEFAULT_TAGS: tuple[str, ...] = ("fleet-manager",)

# Upper bound on deployment list pagination.
_MAX_PAGES = 1000


def build_event_url(access_url: str, path: str, http_key: str) -> str:
    """Absolute callback URL with the shared key as a query parameter."""
    url = f"{access_url.rstrip('/')}{path}"
    if http_key:
        url = f"{url}?http_key={quote(http_key, safe='')}"
    return url


class EdgegapProvisioningClient:
    """ProvisioningClient backed by Edgegap.

    Conforms to the ProvisioningClient protocol defined in protocols.py:
    - create_deployment(location_hints, metadata) -> DeploymentRequest
    - stop_deployment(request_id) -> str
    - list_deployments() -> list[str]
    """

    def __init__(
        self,
        client: EdgegapClient,
        *,
        application: str,
        version: str,
        access_url: str,
        http_key: str = "",
        tags: Sequence[str] = DEFAULT_TAGS,
    ) -> None:
        self._client = client
        self._application = application
        self._version = version
        self._access_url = access_url
        self._http_key = http_key
        self._tags = list(tags)

    def build_deployment_payload(
        self,
        location_hints: Sequence[str],
        metadata: dict[str, Any],
    ) -> dict[str, Any]:
        return {
            "application_name": self._application,
            "version": self._version,
            "users": [{"ip_address": ip} for ip in location_hints],
            "environment_variables": [
                {
                    "key": ENV_CONNECTION_EVENT_URL,
                    "value": build_event_url(self._access_url, CONNECTION_EVENT_PATH, self._http_key),
                    "is_hidden": True,
                },
                {
                    "key": ENV_INSTANCE_EVENT_URL,
                    "value": build_event_url(self._access_url, INSTANCE_EVENT_PATH, self._http_key),
                    "is_hidden": True,
                },
                {
                    "key": ENV_SESSION_METADATA,
                    "value": json.dumps(metadata, default=str),
                    "is_hidden": False,
                },
            ],
            "tags": list(self._tags),
            "webhook": {
                "url": build_event_url(self._access_url, DEPLOYMENT_EVENT_PATH, self._http_key),
            },
        }

    async def create_deployment(
        self,
        location_hints: Sequence[str],
        metadata: dict[str, Any],
    ) -> DeploymentRequest:
        payload = self.build_deployment_payload(location_hints, metadata)
        try:
            result = await self._client.create_deployment(payload)
        except EdgegapAPIError as exc:
            raise ProvisioningError(f"could not create deployment: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise ProvisioningError(f"could not reach Edgegap: {exc}") from exc

        request_id = result.get("request_id")
        if not request_id:
            raise ProvisioningError("deployment accepted without a request_id")
        return DeploymentRequest(request_id=request_id, message=result.get("message", ""))

    async def stop_deployment(self, request_id: str) -> str:
        try:
            result = await self._client.stop_deployment(request_id)
        except EdgegapNotFoundError as exc:
            raise DeploymentNotFoundError(request_id) from exc
        except EdgegapAPIError as exc:
            raise ProvisioningError(
                f"error stopping deployment {request_id}: {exc.message}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProvisioningError(f"could not reach Edgegap: {exc}") from exc

        message = result.get("message", "")
        logger.info(
            "Deployment stop accepted: request_id=%s",
            request_id,
            extra={"instance_id": request_id},
        )
        return message

    async def list_deployments(self) -> list[str]:
        """Request ids of every deployment on the account.

        The listing is all or nothing: callers treat a missing id as a
        stopped deployment, so running past the page cap is an error.
        """
        request_ids: list[str] = []
        page = 1
        for _ in range(_MAX_PAGES):
            try:
                result = await self._client.list_deployments(page)
            except EdgegapAPIError as exc:
                raise ProvisioningError(f"could not list deployments: {exc.message}") from exc
            except httpx.HTTPError as exc:
                raise ProvisioningError(f"could not reach Edgegap: {exc}") from exc

            for item in result.get("data") or []:
                if item.get("request_id"):
                    request_ids.append(item["request_id"])

            pagination = result.get("pagination") or {}
            if not pagination.get("has_next"):
                break
            page = pagination.get("next_page_number") or page + 1
        else:
            raise ProvisioningError(
                f"deployment listing did not finish within {_MAX_PAGES} pages"
            )
        return request_ids

    async def verify_application(self) -> dict[str, Any]:
        """Confirm the configured application exists (startup check)."""
        try:
            return await self._client.get_application(self._application)
        except EdgegapNotFoundError as exc:
            raise ProvisioningError(
                f"Edgegap application {self._application!r} not found"
            ) from exc
        except EdgegapAPIError as exc:
            raise ProvisioningError(
                f"could not verify Edgegap application: {exc.message}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProvisioningError(f"could not reach Edgegap: {exc}") from exc

"""Provisioning providers for the fleet manager."""

from .edgegap_client import (
    EdgegapAPIError,
    EdgegapClient,
    EdgegapNotFoundError,
    EdgegapTimeoutError,
)
from .edgegap_provider import EdgegapProvisioningClient, build_event_url

__all__ = [
    "EdgegapAPIError",
    "EdgegapClient",
    "EdgegapNotFoundError",
    "EdgegapProvisioningClient",
    "EdgegapTimeoutError",
    "build_event_url",
]

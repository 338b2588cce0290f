"""Fleet manager configuration settings.

FleetManagerSettings is the single configuration object accepted by create_app().
It is intentionally a plain dataclass (not env-coupled) so tests can inject config
without touching os.environ.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import timedelta

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string (``1h30m``, ``45s``, ``250ms``).

    Raises ValueError for anything else, including negative durations.
    """
    text = (value or "").strip()
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError("empty duration")

    seconds = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=seconds)


@dataclass(frozen=True, slots=True)
class FleetManagerSettings:
    """Configuration for the fleet-manager FastAPI application.

    All fields have sensible defaults for local development.
    Non-local environments must supply real values for the Edgegap API,
    the public access URL, the server http key and Supabase.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Edgegap ────────────────────────────────────────────────────
    edgegap_api_url: str = "https://api.edgegap.com"
    edgegap_api_token: str = ""
    """Edgegap API token, sent verbatim as the Authorization header. Never log this."""

    edgegap_application: str = ""
    edgegap_version: str = ""
    edgegap_port_name: str = "gameport"
    """Port name whose external port is handed to players."""

    # ── Event callbacks ────────────────────────────────────────────
    access_url: str = "http://localhost:8000"
    """Public base URL the fabric and game servers post events to."""

    http_key: str = ""
    """Shared key for server-to-server calls. Empty disables the check (local only)."""

    # ── Background sweeps ──────────────────────────────────────────
    polling_interval: str = "15m"
    cleanup_interval: str = "1m"
    reservation_max_duration: str = "30s"
    background_sweeps: bool = True

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    """Supabase service-role key for PostgREST calls. Never log this."""

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def polling_period(self) -> timedelta:
        return parse_duration(self.polling_interval)

    @property
    def cleanup_period(self) -> timedelta:
        return parse_duration(self.cleanup_interval)

    @property
    def reservation_max_age(self) -> timedelta:
        return parse_duration(self.reservation_max_duration)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        for name in ("polling_interval", "cleanup_interval", "reservation_max_duration"):
            try:
                period = parse_duration(getattr(self, name))
            except ValueError:
                errors.append(f"{name} is not a valid duration: {getattr(self, name)!r}")
                continue
            if name != "reservation_max_duration" and period <= timedelta(0):
                errors.append(f"{name} must be positive")

        if not self.is_local:
            required = (
                "edgegap_api_url",
                "edgegap_api_token",
                "edgegap_application",
                "edgegap_version",
                "access_url",
                "http_key",
                "supabase_url",
                "supabase_service_role_key",
            )
            for name in required:
                if not getattr(self, name):
                    errors.append(f"{self.environment}: {name} is required")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> FleetManagerSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct FleetManagerSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        sweeps_raw = env.get("FLEET_BACKGROUND_SWEEPS", "true").strip().lower()

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            edgegap_api_url=env.get("EDGEGAP_API_URL", "https://api.edgegap.com"),
            edgegap_api_token=env.get("EDGEGAP_API_TOKEN", ""),
            edgegap_application=env.get("EDGEGAP_APPLICATION", ""),
            edgegap_version=env.get("EDGEGAP_VERSION", ""),
            edgegap_port_name=env.get("EDGEGAP_PORT_NAME", "gameport"),
            access_url=env.get("FLEET_ACCESS_URL", "http://localhost:8000"),
            http_key=env.get("FLEET_HTTP_KEY", ""),
            polling_interval=env.get("EDGEGAP_POLLING_INTERVAL", "15m"),
            cleanup_interval=env.get("FLEET_CLEANUP_INTERVAL", "1m"),
            reservation_max_duration=env.get(
                "FLEET_RESERVATION_MAX_DURATION", "30s",
            ),
            background_sweeps=sweeps_raw not in ("0", "false", "no", "off"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
        )

"""Fleet manager FastAPI application."""

from .main import create_app
from .settings import FleetManagerSettings

__all__ = ["create_app", "FleetManagerSettings"]

"""HTTP routers for the fleet manager."""

from .events import create_events_router
from .sessions import create_sessions_router

__all__ = [
    "create_events_router",
    "create_sessions_router",
]

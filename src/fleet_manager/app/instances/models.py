"""Instance record schema.

An ``Instance`` is one provisioned dedicated-server session. Its seat
ledger is a first-class ``reservation`` field rather than a key inside the
free-form ``metadata`` bag, and the whole record is serialized as one
schema.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

RESERVED_METADATA_KEY = 'reservation'

UNLIMITED_PLAYERS = -1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InstanceStatus(str, Enum):
    REQUESTED = 'REQUESTED'
    RUNNING = 'RUNNING'
    READY = 'READY'
    STOPPING = 'STOPPING'
    ERROR = 'ERROR'
    UNKNOWN = 'UNKNOWN'


class ConnectionInfo(BaseModel):
    """Network endpoint players use to reach the game server."""

    ip_address: str = ''
    dns_name: str = ''
    port: int | None = None


class SeatLedger(BaseModel):
    """Capacity, reservations and live connections for one instance.

    ``available_seats`` and ``reservations_count`` are cached values; they
    are only trustworthy right after ``ledger.reconcile()`` ran.
    """

    max_players: int = UNLIMITED_PLAYERS
    reservations: list[str] = Field(default_factory=list)
    reservations_updated_at: datetime = Field(default_factory=utc_now)
    connections: list[str] = Field(default_factory=list)
    available_seats: int = UNLIMITED_PLAYERS
    reservations_count: int = 0
    callback_id: str = ''

    @property
    def is_unlimited(self) -> bool:
        return self.max_players < 0


class Instance(BaseModel):
    id: str
    status: InstanceStatus = InstanceStatus.REQUESTED
    create_time: datetime = Field(default_factory=utc_now)
    player_count: int = 0
    connection_info: ConnectionInfo | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    reservation: SeatLedger = Field(default_factory=SeatLedger)

    def to_document(self) -> dict[str, Any]:
        """JSON-safe dict for the document store."""
        return self.model_dump(mode='json')

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Instance:
        return cls.model_validate(document)


class JoinResult(BaseModel):
    """Outcome of a successful join.

    ``sessions`` is reserved for per-user session details and is always
    ``None`` today.
    """

    instance: Instance
    sessions: list[dict[str, Any]] | None = None

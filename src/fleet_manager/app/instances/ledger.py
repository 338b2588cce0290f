"""Seat ledger algebra.

Pure functions over a ``SeatLedger`` and its owning ``Instance``; no I/O.

    available_seats = max_players - len(reservations) - len(connections)

when ``max_players >= 0``, otherwise ``-1`` (unbounded). ``reconcile()`` is
the single place that refreshes the cached counters and must run as the
last step before every write.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Sequence

from .errors import InvalidInputError, SeatLimitReachedError
from .models import UNLIMITED_PLAYERS, Instance, SeatLedger, utc_now


def compute_available_seats(ledger: SeatLedger) -> int:
    if ledger.is_unlimited:
        return UNLIMITED_PLAYERS
    return (
        ledger.max_players
        - len(ledger.reservations)
        - len(ledger.connections)
    )


def reconcile(instance: Instance) -> Instance:
    """Refresh derived fields from ``reservations`` and ``connections``."""
    ledger = instance.reservation
    ledger.available_seats = compute_available_seats(ledger)
    ledger.reservations_count = len(ledger.reservations)
    instance.player_count = len(ledger.connections)
    return instance


def distinct(ids: Iterable[str]) -> list[str]:
    """De-duplicate while keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def new_ledger(
    *,
    max_players: int,
    user_ids: Sequence[str],
    callback_id: str,
    now: datetime | None = None,
) -> SeatLedger:
    """Ledger for a freshly requested instance: everyone starts reserved."""
    return SeatLedger(
        max_players=max_players,
        reservations=distinct(user_ids),
        reservations_updated_at=now or utc_now(),
        connections=[],
        callback_id=callback_id,
    )


def join(
    ledger: SeatLedger,
    player_count: int,
    user_ids: Sequence[str],
    *,
    instance_id: str = '',
    now: datetime | None = None,
) -> list[str]:
    """Reserve seats for ``user_ids``.

    Ids already reserved or connected are a no-op and do not consume a
    seat; duplicates inside one request count once. Raises
    ``SeatLimitReachedError`` without touching the ledger when the request
    does not fit.

    Returns the ids that were newly reserved.
    """
    if not user_ids:
        raise InvalidInputError(
            'expects user_ids to have at least one valid user id'
        )
    if any(not uid for uid in user_ids):
        raise InvalidInputError('user ids must be non-empty strings')

    present = set(ledger.reservations) | set(ledger.connections)
    new_ids = [uid for uid in distinct(user_ids) if uid not in present]

    if not ledger.is_unlimited:
        occupied = player_count + len(ledger.reservations)
        if occupied + len(new_ids) > ledger.max_players:
            raise SeatLimitReachedError(
                instance_id,
                requested=len(new_ids),
                available=max(ledger.max_players - occupied, 0),
            )

    if new_ids:
        ledger.reservations = [*ledger.reservations, *new_ids]
        ledger.reservations_updated_at = now or utc_now()
    return new_ids


def apply_connections(
    ledger: SeatLedger,
    reported: Sequence[str],
    *,
    now: datetime | None = None,
) -> None:
    """Replace the connection set with ``reported``.

    The report is the complete current connection set, so this is a full
    replacement. Anyone now connected stops holding a reservation.
    """
    connections = distinct(uid for uid in reported if uid)
    connected = set(connections)
    ledger.connections = connections
    ledger.reservations = [
        uid for uid in ledger.reservations if uid not in connected
    ]
    ledger.reservations_updated_at = now or utc_now()


def expire_reservations(
    ledger: SeatLedger,
    *,
    now: datetime,
    max_age: timedelta,
) -> list[str]:
    """Drop reservations that have not been honoured within ``max_age``.

    Age is measured from the last reservation-set mutation. Returns the
    dropped ids (empty when nothing expired).
    """
    if not ledger.reservations:
        return []
    if now - ledger.reservations_updated_at <= max_age:
        return []

    expired = list(ledger.reservations)
    ledger.reservations = []
    ledger.reservations_updated_at = now
    return expired

"""Periodic maintenance sweeps over instance records.

Two sweeps keep local state honest against the outside world:

- ``TerminatedInstanceSweeper`` drops local records whose deployment the
  fabric no longer knows about (stopped out of band, or the stop webhook
  never reached us).
- ``ReservationExpirySweeper`` releases seats held by players that never
  connected within the reservation window.

Usage::

    sweeper = ReservationExpirySweeper(store, max_age=timedelta(seconds=30))
    report = await sweeper.sweep(now=datetime.now(timezone.utc))

``run_periodically`` drives either sweep from an asyncio task.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Awaitable, Callable

from fleet_manager.observability.metrics import (
    SWEEP_EXPIRED_RESERVATIONS_TOTAL,
    SWEEP_REMOVED_INSTANCES_TOTAL,
)

from . import ledger
from .errors import PersistenceError
from .models import utc_now
from .store import InstanceStore

if TYPE_CHECKING:
    from .engine import LifecycleEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SweepReport:
    """Result of one sweep pass.

    Attributes:
        scanned: Number of local instance records examined.
        affected: Ids of instances removed or whose reservations expired.
        released: Total reservations released (expiry sweep only).
        sweep_ts: Timestamp of the sweep.
    """

    scanned: int
    affected: tuple[str, ...]
    sweep_ts: datetime
    released: int = 0

    @property
    def affected_count(self) -> int:
        return len(self.affected)


class TerminatedInstanceSweeper:
    """Removes local instances the fabric has no deployment for.

    A removed instance that was still waiting to become ready fails its
    pending create.
    """

    def __init__(self, engine: LifecycleEngine) -> None:
        self._engine = engine

    async def sweep(self, *, now: datetime | None = None) -> SweepReport:
        now = now or utc_now()
        live = set(await self._engine.provisioning.list_deployments())
        instances = await self._engine.store.list_all()

        removed: list[str] = []
        for instance in instances:
            # Records newer than the fabric listing may be missing from it.
            if instance.id in live or instance.create_time > now:
                continue
            # Deleting an already-deleted record is a no-op in the store.
            await self._engine.store.delete(instance.id)
            removed.append(instance.id)
            logger.info(
                "Removed instance %s: no matching deployment",
                instance.id,
                extra={"instance_id": instance.id},
            )
            self._engine.abandon_create(instance, 'lost its deployment before it became ready')

        SWEEP_REMOVED_INSTANCES_TOTAL.inc(len(removed))
        return SweepReport(
            scanned=len(instances),
            affected=tuple(removed),
            sweep_ts=now,
        )


class ReservationExpirySweeper:
    """Releases reservations older than ``max_age``."""

    def __init__(self, store: InstanceStore, *, max_age: timedelta) -> None:
        self._store = store
        self._max_age = max_age

    async def sweep(self, *, now: datetime | None = None) -> SweepReport:
        now = now or utc_now()
        instances = await self._store.list_all('reservation.reservations_count:>0')

        affected: list[str] = []
        released = 0
        for candidate in instances:
            # The listing is only a candidate set; mutate the current record.
            instance = await self._store.get(candidate.id)
            if instance is None:
                continue
            expired = ledger.expire_reservations(
                instance.reservation, now=now, max_age=self._max_age,
            )
            if not expired:
                continue
            try:
                await self._store.save(instance)
            except PersistenceError:
                logger.exception(
                    "Failed to release expired reservations on %s",
                    instance.id,
                    extra={"instance_id": instance.id},
                )
                continue
            affected.append(instance.id)
            released += len(expired)
            logger.info(
                "Released %d expired reservation(s) on %s",
                len(expired),
                instance.id,
                extra={"instance_id": instance.id},
            )

        SWEEP_EXPIRED_RESERVATIONS_TOTAL.inc(released)
        return SweepReport(
            scanned=len(instances),
            affected=tuple(affected),
            sweep_ts=now,
            released=released,
        )


async def run_periodically(
    name: str,
    sweep: Callable[[], Awaitable[SweepReport]],
    interval: timedelta,
) -> None:
    """Run ``sweep`` every ``interval`` until cancelled.

    A failing pass is logged and the loop carries on with the next one.
    """
    seconds = interval.total_seconds()
    while True:
        await asyncio.sleep(seconds)
        try:
            report = await sweep()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s sweep failed", name)
            continue
        if report.affected:
            logger.info(
                "%s sweep: %d of %d instance(s) affected",
                name,
                report.affected_count,
                report.scanned,
            )

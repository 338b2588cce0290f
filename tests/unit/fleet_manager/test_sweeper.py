"""Unit tests for the terminated-instance and reservation-expiry sweeps."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from fleet_manager.app.inmemory import InMemoryDocumentStore
from fleet_manager.app.instances import ledger
from fleet_manager.app.instances.callbacks import CreateOutcome
from fleet_manager.app.instances.errors import PersistenceError, ProvisioningError
from fleet_manager.app.instances.models import Instance, SeatLedger, utc_now
from fleet_manager.app.instances.store import InstanceStore
from fleet_manager.app.instances.sweeper import (
    ReservationExpirySweeper,
    SweepReport,
    TerminatedInstanceSweeper,
    run_periodically,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _instance(instance_id, *, reservations=(), updated_at=T0, created=T0):
    return Instance(
        id=instance_id,
        create_time=created,
        reservation=SeatLedger(
            max_players=4,
            reservations=list(reservations),
            reservations_updated_at=updated_at,
        ),
    )


@pytest.mark.asyncio
async def test_terminated_sweep_removes_records_without_deployment(engine_parts):
    engine, store, provisioning, _, _ = engine_parts
    provisioning.deployments['live'] = {}
    await store.save(_instance('live'))
    await store.save(_instance('gone'))

    report = await TerminatedInstanceSweeper(engine).sweep(now=T0 + timedelta(minutes=1))

    assert report.scanned == 2
    assert report.affected == ('gone',)
    assert await store.get('gone') is None
    assert await store.get('live') is not None


@pytest.mark.asyncio
async def test_terminated_sweep_skips_records_newer_than_listing(engine_parts):
    engine, store, _, _, _ = engine_parts
    await store.save(_instance('fresh', created=T0 + timedelta(seconds=5)))

    report = await TerminatedInstanceSweeper(engine).sweep(now=T0)

    assert report.affected_count == 0
    assert await store.get('fresh') is not None


@pytest.mark.asyncio
async def test_terminated_sweep_aborts_when_listing_fails(engine_parts):
    engine, store, provisioning, _, _ = engine_parts
    await store.save(_instance('kept'))
    provisioning.list_deployments = AsyncMock(side_effect=ProvisioningError('listing truncated'))

    with pytest.raises(ProvisioningError):
        await TerminatedInstanceSweeper(engine).sweep(now=T0 + timedelta(minutes=1))

    assert await store.get('kept') is not None


@pytest.mark.asyncio
async def test_terminated_sweep_fails_pending_create(engine_parts):
    engine, store, provisioning, callbacks, _ = engine_parts
    results = []
    instance_id = await engine.create(4, ['a'], {}, results.append)
    callback_id = (await store.get(instance_id)).reservation.callback_id
    provisioning.deployments.pop(instance_id)

    report = await TerminatedInstanceSweeper(engine).sweep(now=utc_now() + timedelta(minutes=1))

    assert report.affected == (instance_id,)
    assert not callbacks.is_pending(callback_id)
    assert len(callbacks) == 0
    assert [r.outcome for r in results] == [CreateOutcome.ERROR]
    assert isinstance(results[0].error, ProvisioningError)


@pytest.mark.asyncio
async def test_terminated_sweep_leaves_resolved_creates_alone(engine_parts):
    engine, store, provisioning, callbacks, _ = engine_parts
    results = []
    instance_id = await engine.create(4, ['a'], {}, results.append)
    instance = await store.get(instance_id)
    callbacks.resolve(instance.reservation.callback_id, CreateOutcome.SUCCESS, instance=instance)
    provisioning.deployments.pop(instance_id)

    await TerminatedInstanceSweeper(engine).sweep(now=utc_now() + timedelta(minutes=1))

    assert [r.outcome for r in results] == [CreateOutcome.SUCCESS]


@pytest.mark.asyncio
async def test_expiry_sweep_releases_stale_reservations():
    store = InstanceStore(InMemoryDocumentStore())
    await store.save(_instance('stale', reservations=['a', 'b']))
    await store.save(_instance('fresh', reservations=['c'], updated_at=T0 + timedelta(seconds=50)))
    await store.save(_instance('empty'))
    sweeper = ReservationExpirySweeper(store, max_age=timedelta(seconds=30))

    report = await sweeper.sweep(now=T0 + timedelta(seconds=60))

    assert report.scanned == 2
    assert report.affected == ('stale',)
    assert report.released == 2
    stale = await store.get('stale')
    assert stale.reservation.reservations == []
    assert stale.reservation.available_seats == 4
    assert (await store.get('fresh')).reservation.reservations == ['c']


@pytest.mark.asyncio
async def test_expiry_sweep_keeps_connections_reported_during_pass(monkeypatch):
    store = InstanceStore(InMemoryDocumentStore())
    await store.save(_instance('busy', reservations=['a', 'b']))

    real_list_all = store.list_all

    async def list_then_report(query=None):
        snapshot = await real_list_all(query)
        # A connection report lands after the listing was taken.
        current = await store.get('busy')
        ledger.apply_connections(current.reservation, ['a', 'x'], now=T0)
        await store.save(current)
        return snapshot

    monkeypatch.setattr(store, 'list_all', list_then_report)

    report = await ReservationExpirySweeper(store, max_age=timedelta(seconds=30)).sweep(
        now=T0 + timedelta(seconds=60),
    )

    busy = await store.get('busy')
    assert report.released == 1
    assert busy.reservation.connections == ['a', 'x']
    assert busy.reservation.reservations == []
    assert busy.player_count == 2
    assert busy.reservation.available_seats == 2


@pytest.mark.asyncio
async def test_expiry_sweep_skips_records_deleted_during_pass(monkeypatch):
    store = InstanceStore(InMemoryDocumentStore())
    await store.save(_instance('doomed', reservations=['a']))

    real_list_all = store.list_all

    async def list_then_delete(query=None):
        snapshot = await real_list_all(query)
        await store.delete('doomed')
        return snapshot

    monkeypatch.setattr(store, 'list_all', list_then_delete)

    report = await ReservationExpirySweeper(store, max_age=timedelta(seconds=1)).sweep(
        now=T0 + timedelta(minutes=5),
    )

    assert report.affected == ()
    assert await store.get('doomed') is None


@pytest.mark.asyncio
async def test_expiry_sweep_continues_after_write_failure(monkeypatch):
    store = InstanceStore(InMemoryDocumentStore())
    await store.save(_instance('one', reservations=['a']))
    await store.save(_instance('two', reservations=['b']))

    real_save = store.save

    async def flaky_save(instance):
        if instance.id == 'one':
            raise PersistenceError('write failed')
        return await real_save(instance)

    monkeypatch.setattr(store, 'save', flaky_save)

    report = await ReservationExpirySweeper(store, max_age=timedelta(seconds=1)).sweep(
        now=T0 + timedelta(minutes=5),
    )

    assert report.affected == ('two',)
    assert report.released == 1


@pytest.mark.asyncio
async def test_run_periodically_survives_failing_pass():
    calls = []

    async def sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError('boom')
        if len(calls) >= 3:
            raise asyncio.CancelledError
        return SweepReport(scanned=1, affected=('x',), sweep_ts=T0)

    with patch('fleet_manager.app.instances.sweeper.asyncio.sleep', new_callable=AsyncMock):
        with pytest.raises(asyncio.CancelledError):
            await run_periodically('test', sweep, timedelta(seconds=10))

    assert len(calls) == 3

"""Unit tests for InstanceStore over the in-memory document store."""

from datetime import datetime, timedelta, timezone

import pytest

from fleet_manager.app.db.errors import StoreUnavailableError
from fleet_manager.app.inmemory import InMemoryDocumentStore
from fleet_manager.app.instances.errors import InvalidInputError, PersistenceError
from fleet_manager.app.instances.models import Instance, InstanceStatus, SeatLedger
from fleet_manager.app.instances.store import COLLECTION, InstanceStore

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FailingDocumentStore(InMemoryDocumentStore):
    async def put(self, collection, key, value):
        raise StoreUnavailableError('connection refused')

    async def get(self, collection, key):
        raise StoreUnavailableError('connection refused')


def _instance(instance_id, *, players=(), max_players=4, status=InstanceStatus.READY, offset=0):
    return Instance(
        id=instance_id,
        status=status,
        create_time=T0 + timedelta(seconds=offset),
        reservation=SeatLedger(max_players=max_players, connections=list(players)),
    )


@pytest.mark.asyncio
async def test_save_reconciles_before_write():
    documents = InMemoryDocumentStore()
    store = InstanceStore(documents)
    instance = Instance(
        id='inst-1',
        player_count=9,
        reservation=SeatLedger(max_players=3, reservations=['a'], connections=['b']),
    )

    await store.save(instance)

    raw = await documents.get(COLLECTION, 'inst-1')
    assert raw['player_count'] == 1
    assert raw['reservation']['available_seats'] == 1
    assert raw['reservation']['reservations_count'] == 1


@pytest.mark.asyncio
async def test_get_round_trips_and_missing_is_none():
    store = InstanceStore(InMemoryDocumentStore())
    await store.save(_instance('inst-1', players=['a']))

    loaded = await store.get('inst-1')

    assert loaded.id == 'inst-1'
    assert loaded.reservation.connections == ['a']
    assert loaded.create_time == T0
    assert await store.get('missing') is None


@pytest.mark.asyncio
async def test_delete_removes_record():
    store = InstanceStore(InMemoryDocumentStore())
    await store.save(_instance('inst-1'))
    await store.delete('inst-1')
    assert await store.get('inst-1') is None


@pytest.mark.asyncio
async def test_store_failures_become_persistence_errors():
    store = InstanceStore(FailingDocumentStore())
    with pytest.raises(PersistenceError):
        await store.save(_instance('inst-1'))
    with pytest.raises(PersistenceError):
        await store.get('inst-1')


@pytest.mark.asyncio
async def test_malformed_record_is_persistence_error():
    documents = InMemoryDocumentStore()
    await documents.put(COLLECTION, 'bad', {'id': 'bad', 'status': 'NOT_A_STATUS'})
    with pytest.raises(PersistenceError):
        await InstanceStore(documents).get('bad')


@pytest.mark.asyncio
async def test_list_filters_and_orders_by_players_then_newest():
    store = InstanceStore(InMemoryDocumentStore())
    await store.save(_instance('busy', players=['a', 'b']))
    await store.save(_instance('old-empty', offset=0))
    await store.save(_instance('new-empty', offset=10))
    await store.save(_instance('starting', status=InstanceStatus.REQUESTED, offset=20))

    page, cursor = await store.list('status:READY')

    assert [i.id for i in page] == ['new-empty', 'old-empty', 'busy']
    assert cursor is None


@pytest.mark.asyncio
async def test_list_paginates_with_cursor():
    store = InstanceStore(InMemoryDocumentStore())
    for n in range(5):
        await store.save(_instance(f'inst-{n}', offset=n))

    first, cursor = await store.list(limit=2)
    second, cursor2 = await store.list(limit=2, cursor=cursor)
    third, cursor3 = await store.list(limit=2, cursor=cursor2)

    ids = [i.id for i in first + second + third]
    assert ids == ['inst-4', 'inst-3', 'inst-2', 'inst-1', 'inst-0']
    assert cursor3 is None


@pytest.mark.asyncio
async def test_list_all_follows_cursors():
    store = InstanceStore(InMemoryDocumentStore())
    for n in range(3):
        await store.save(_instance(f'inst-{n}', max_players=-1))
    instances = await store.list_all('reservation.available_seats:-1')
    assert len(instances) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize('limit', [0, 101])
async def test_list_rejects_out_of_range_limit(limit):
    with pytest.raises(InvalidInputError):
        await InstanceStore(InMemoryDocumentStore()).list(limit=limit)

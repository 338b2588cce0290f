"""Unit tests for the create-callback registry."""

import asyncio
import threading

import pytest

from fleet_manager.app.instances.callbacks import (
    CallbackRegistry,
    CreateOutcome,
    CreateResult,
    future_callback,
)
from fleet_manager.app.instances.errors import DuplicateCallbackError
from fleet_manager.app.instances.models import Instance


def test_resolve_fires_handler_once():
    registry = CallbackRegistry()
    results: list[CreateResult] = []
    registry.register('cb-1', results.append)

    instance = Instance(id='inst-1')
    assert registry.resolve('cb-1', CreateOutcome.SUCCESS, instance=instance) is True
    assert registry.resolve('cb-1', CreateOutcome.ERROR) is False

    assert len(results) == 1
    assert results[0].ok
    assert results[0].instance is instance
    assert not registry.is_pending('cb-1')


def test_resolve_unknown_id_is_noop():
    assert CallbackRegistry().resolve('nope', CreateOutcome.TIMEOUT) is False


def test_duplicate_registration_rejected():
    registry = CallbackRegistry()
    registry.register('cb-1', lambda result: None)
    with pytest.raises(DuplicateCallbackError):
        registry.register('cb-1', lambda result: None)
    assert len(registry) == 1


def test_generated_ids_are_unique():
    registry = CallbackRegistry()
    assert len({registry.generate_id() for _ in range(100)}) == 100


def test_handler_exception_does_not_escape():
    registry = CallbackRegistry()

    def boom(result):
        raise RuntimeError('caller bug')

    registry.register('cb-1', boom)
    assert registry.resolve('cb-1', CreateOutcome.ERROR, error=ValueError('x')) is True
    assert not registry.is_pending('cb-1')


def test_racing_resolvers_fire_exactly_once():
    registry = CallbackRegistry()
    fired: list[CreateOutcome] = []
    registry.register('cb-1', lambda result: fired.append(result.outcome))

    barrier = threading.Barrier(8)
    wins: list[bool] = []
    lock = threading.Lock()

    def resolver(outcome):
        barrier.wait()
        won = registry.resolve('cb-1', outcome)
        with lock:
            wins.append(won)

    outcomes = [CreateOutcome.SUCCESS, CreateOutcome.ERROR] * 4
    threads = [threading.Thread(target=resolver, args=(o,)) for o in outcomes]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(fired) == 1
    assert wins.count(True) == 1


@pytest.mark.asyncio
async def test_future_callback_same_loop():
    future = asyncio.get_running_loop().create_future()
    handler = future_callback(future)

    handler(CreateResult(callback_id='cb', outcome=CreateOutcome.SUCCESS))

    assert future.done()
    assert future.result().outcome is CreateOutcome.SUCCESS


@pytest.mark.asyncio
async def test_future_callback_from_other_thread():
    future = asyncio.get_running_loop().create_future()
    handler = future_callback(future)

    thread = threading.Thread(
        target=handler,
        args=(CreateResult(callback_id='cb', outcome=CreateOutcome.ERROR),),
    )
    thread.start()
    result = await asyncio.wait_for(future, timeout=2)
    thread.join()

    assert result.outcome is CreateOutcome.ERROR


@pytest.mark.asyncio
async def test_future_callback_ignores_second_result():
    future = asyncio.get_running_loop().create_future()
    handler = future_callback(future)

    handler(CreateResult(callback_id='cb', outcome=CreateOutcome.TIMEOUT))
    handler(CreateResult(callback_id='cb', outcome=CreateOutcome.SUCCESS))

    assert future.result().outcome is CreateOutcome.TIMEOUT

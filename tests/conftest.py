"""Pytest configuration for fleet_manager tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest


@pytest.fixture
def engine_parts():
    """Fresh in-memory engine wiring: (engine, store, provisioning, callbacks, resolver)."""
    from fleet_manager.app.inmemory import (
        InMemoryDocumentStore,
        InMemoryLocationResolver,
        InMemoryProvisioningClient,
    )
    from fleet_manager.app.instances.callbacks import CallbackRegistry
    from fleet_manager.app.instances.engine import LifecycleEngine
    from fleet_manager.app.instances.store import InstanceStore

    store = InstanceStore(InMemoryDocumentStore())
    provisioning = InMemoryProvisioningClient()
    callbacks = CallbackRegistry()
    resolver = InMemoryLocationResolver({'a': '10.0.0.1', 'b': '10.0.0.2'})
    engine = LifecycleEngine(store, provisioning, callbacks, resolver, port_name='gameport')
    return engine, store, provisioning, callbacks, resolver

"""Shared fixtures for TimeStitch tests."""

import itertools
from unittest.mock import AsyncMock

import pytest

from timestitch.local import KeyValueStore, OfflineCache
from timestitch.remote import RemoteClient
from timestitch.sync import ChangeLog, ConnectivityMonitor


@pytest.fixture
def store():
    """Create an in-memory key/value store."""
    kv = KeyValueStore(":memory:")
    kv.connect()
    yield kv
    kv.close()


@pytest.fixture
def change_log(store):
    return ChangeLog(store)


@pytest.fixture
def cache(store):
    return OfflineCache(store)


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initial=True)


@pytest.fixture
def remote():
    """Create a remote client double that accepts every call."""
    mock = AsyncMock(spec=RemoteClient)
    mock.user_id = "user-1"
    ids = itertools.count(1)

    async def create_entity(entity_type, row):
        return {**row, "id": row.get("id") or f"remote-{entity_type.value}-{next(ids)}"}

    async def update_entity(entity_type, entity_id, patch):
        return {"id": entity_id, **patch}

    mock.create_entity.side_effect = create_entity
    mock.update_entity.side_effect = update_entity
    mock.delete_entity.return_value = None
    mock.list_entities.return_value = []
    mock.health_check.return_value = True
    return mock

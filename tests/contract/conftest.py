"""Fixtures serving the real FastAPI app over an in-memory controller."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from oven_monitor.lib.api_server import create_app
from oven_monitor.services import (
    KeyValueStore,
    LoggingScheduler,
    OvenController,
    SettingsService,
    SQLiteDocumentStore
)


@pytest.fixture
def api_store():
    store = SQLiteDocumentStore(in_memory=True)
    asyncio.run(store.initialize())
    yield store
    asyncio.run(store.close())


@pytest.fixture
def api_controller(api_store, timers):
    state_store = KeyValueStore()
    return OvenController(
        api_store,
        state_store,
        settings=SettingsService(state_store),
        scheduler=LoggingScheduler(timers, minimum_period_ms=5000)
    )


@pytest.fixture
def client(api_controller):
    with TestClient(create_app(api_controller)) as client:
        yield client

"""
Shared fixtures for the relay test suite.

Connections are real `models.Connection` objects wrapped around an
AsyncMock websocket that reports itself CONNECTED. Their sender task is
not started unless a test does so, so every frame the hub emits stays on
the outbound queue where `drain()` can read it.
"""

import json
from unittest.mock import AsyncMock

import pytest

from models import Connection, Hub
from utilities import RELAY_ENDPOINT

PASSWORD = "secret"


def drain(connection: Connection) -> list:
    """Pop every queued frame; the close sentinel is skipped."""
    frames = []
    while not connection.queue.empty():
        item = connection.queue.get_nowait()
        if isinstance(item, dict):
            frames.append(item)
    return frames


def frame(**message) -> str:
    return json.dumps(message)


@pytest.fixture
def hub():
    return Hub(password=PASSWORD, sync_field="icon", heartbeat_interval=3600)


@pytest.fixture
def connect(hub):
    """Register a connection on the hub and discard its welcome frame."""
    counter = iter(range(1, 1000))

    def _connect(endpoint: str = RELAY_ENDPOINT, address: str = None) -> Connection:
        websocket = AsyncMock()
        websocket.client_state.name = "CONNECTED"
        connection = Connection(websocket)
        hub.connect(connection, address or f"10.0.0.{next(counter)}", endpoint)
        drain(connection)
        return connection

    return _connect

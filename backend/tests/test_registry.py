"""Tests for the connection registry, liveness monitor and Connection queueing."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import drain, frame
from models import Connection, ConnectionRegistry, Consumer, LivenessMonitor


class TestConnectionRegistry:
    def test_register_creates_info(self):
        registry = ConnectionRegistry()
        connection = Connection(AsyncMock())

        info = registry.register(connection, "1.2.3.4")

        assert info.address == "1.2.3.4"
        assert info.is_alive is True
        assert info.role == Consumer()
        assert registry.all_connections() == [connection]

    def test_unregister_runs_cleanup_hooks_once(self):
        registry = ConnectionRegistry()
        connection = Connection(AsyncMock())
        seen = []
        registry.on_unregister(lambda c, i: seen.append((c, i.address)))
        registry.register(connection, "1.2.3.4")

        registry.unregister(connection)
        registry.unregister(connection)

        assert seen == [(connection, "1.2.3.4")]
        assert len(registry) == 0

    def test_mark_alive_on_unknown_connection(self):
        registry = ConnectionRegistry()
        registry.mark_alive(Connection(AsyncMock()))


class TestLivenessMonitor:
    @pytest.mark.asyncio
    async def test_idle_listener_is_never_written_to_or_dropped(self, hub, connect):
        a = connect()
        hub.channels.subscribe(a, ["room1"])

        for _ in range(3):
            assert await hub.liveness.tick() == 0

        assert drain(a) == []
        assert a in hub.registry
        assert hub.registry.info(a).is_alive is True

    @pytest.mark.asyncio
    async def test_dead_transport_is_terminated_on_second_tick(self, hub, connect):
        a = connect()
        hub.channels.subscribe(a, ["room1"])
        a.websocket.client_state.name = "DISCONNECTED"

        assert await hub.liveness.tick() == 0
        assert hub.registry.info(a).is_alive is False
        assert await hub.liveness.tick() == 1

        assert a not in hub.registry
        assert "room1" not in hub.channels
        assert a.is_open is False
        a.websocket.close.assert_awaited_once_with(code=1001)

    @pytest.mark.asyncio
    async def test_failed_write_counts_as_dead(self, hub, connect):
        a = connect()
        a.websocket.send_text.side_effect = RuntimeError("socket gone")
        a.start()
        a.send({"type": "pong"})
        await asyncio.wait_for(a.flushed(), timeout=1)

        await hub.liveness.tick()
        assert await hub.liveness.tick() == 1
        assert a not in hub.registry

    @pytest.mark.asyncio
    async def test_inbound_frame_between_ticks_keeps_connection(self, hub, connect):
        a = connect()
        a.websocket.client_state.name = "CONNECTING"

        await hub.liveness.tick()
        hub.handle(a, frame(type="heartbeat"))
        await hub.liveness.tick()

        assert a in hub.registry
        assert drain(a) == []

    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self, hub, connect):
        a = connect()
        await a.terminate()
        await a.terminate()

        a.websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_keeps_going_after_a_failed_tick(self):
        registry = ConnectionRegistry()
        websocket = AsyncMock()
        websocket.close.side_effect = ValueError("close exploded")
        connection = Connection(websocket)
        registry.register(connection, "1.2.3.4").is_alive = False
        monitor = LivenessMonitor(registry, interval=0.01)

        task = monitor.start()
        await asyncio.sleep(0.1)

        assert not task.done()
        assert connection not in registry
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        monitor = LivenessMonitor(ConnectionRegistry(), interval=3600)
        task = monitor.start()
        await monitor.stop()

        assert task.cancelled() or task.done()


class TestConnectionQueue:
    def test_send_after_close_is_dropped(self):
        connection = Connection(AsyncMock())
        connection.close(code=1008)

        assert connection.send({"type": "late"}) is False
        assert connection.close_code == 1008

    def test_overflow_drops_oldest_and_warns(self):
        connection = Connection(AsyncMock(), queue_size=3)
        for n in range(5):
            connection.send({"n": n})

        frames = drain(connection)
        assert frames[-1] == {"n": 4}
        assert {"type": "error", "reason": "slow-consumer"} in frames
        assert len(frames) == 3

    @pytest.mark.asyncio
    async def test_sender_loop_writes_then_closes(self):
        websocket = AsyncMock()
        connection = Connection(websocket)
        connection.send({"type": "auth_failed"})
        connection.close(code=1008)

        await asyncio.wait_for(connection.start(), timeout=1)

        websocket.send_text.assert_awaited_once_with('{"type": "auth_failed"}')
        websocket.close.assert_awaited_once_with(code=1008)

    @pytest.mark.asyncio
    async def test_send_failure_marks_connection_closed(self):
        websocket = AsyncMock()
        websocket.send_text.side_effect = RuntimeError("socket gone")
        connection = Connection(websocket)
        connection.send({"type": "x"})

        await asyncio.wait_for(connection.start(), timeout=1)

        assert connection.is_open is False

"""Tests for frame dispatch on the relay endpoint."""

from unittest.mock import AsyncMock

from conftest import drain, frame
from models import Connection


class TestDispatchErrors:
    def test_invalid_json(self, hub, connect):
        a = connect()
        hub.handle(a, "{not json")
        assert drain(a) == [{"type": "error", "reason": "invalid-json"}]
        assert a.is_open

    def test_unknown_type(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="teleport"))
        assert drain(a) == [{"type": "error", "reason": "type-unknown"}]

    def test_non_object_frame(self, hub, connect):
        a = connect()
        hub.handle(a, "[1, 2]")
        assert drain(a) == [{"type": "error", "reason": "type-unknown"}]

    def test_wrong_shaped_type(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type=5))
        hub.handle(a, frame(type=["ping"]))
        assert drain(a) == [{"type": "error", "reason": "type-unknown"}] * 2
        assert a.is_open

    def test_broadcast_without_channel(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="broadcast", data={"x": 1}))
        assert drain(a) == [{"type": "error", "reason": "no-channel"}]

    def test_state_without_channel(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="state", action="get", channel=[]))
        assert drain(a) == [{"type": "error", "reason": "no-channel"}]

    def test_state_with_unknown_action(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="state", action="replace", channel="cfg"))
        assert drain(a) == [{"type": "error", "reason": "invalid-state-action"}]

    def test_state_with_wrong_shaped_action(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="state", action=5, channel="cfg"))
        hub.handle(a, frame(type="state", action={"op": "get"}, channel="cfg"))
        assert drain(a) == [{"type": "error", "reason": "invalid-state-action"}] * 2

    def test_producer_events_unknown_on_relay_endpoint(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="sample", data={}))
        assert drain(a) == [{"type": "error", "reason": "type-unknown"}]


class TestRelayMessages:
    def test_welcome_on_connect(self, hub):
        a = Connection(AsyncMock())
        hub.connect(a, "1.2.3.4")
        assert drain(a) == [{"type": "welcome", "address": "1.2.3.4"}]

    def test_ping(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="ping", id=7))

        (pong,) = drain(a)
        assert pong["type"] == "pong"
        assert pong["id"] == 7

    def test_connect_and_subscribe_replies(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="connect", channel="room1"))
        hub.handle(a, frame(type="subscribe", channel='["room2","room3"]'))

        assert drain(a) == [
            {"type": "connected", "subscribed": ["room1"]},
            {"type": "subscribed", "subscribed": ["room1", "room2", "room3"]},
        ]

    def test_malformed_channel_string_subscribes_nothing(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="subscribe", channel="[oops"))
        assert drain(a) == [{"type": "subscribed", "subscribed": []}]

    def test_unsubscribe_and_unsubscribe_all(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="subscribe", channel=["x", "y", "z"]))
        hub.handle(a, frame(type="unsubscribe", channel="x"))
        hub.handle(a, frame(type="unsubscribe.all"))

        assert drain(a)[1:] == [
            {"type": "unsubscribed", "subscribed": ["y", "z"]},
            {"type": "unsubscribed.all"},
        ]
        assert hub.channels.counts() == {}

    def test_broadcast_scenario(self, hub, connect):
        a = connect(address="1.1.1.1")
        b = connect()
        hub.handle(a, frame(type="subscribe", channel="room1"))
        hub.handle(b, frame(type="subscribe", channel=["room1", "room2"]))
        drain(a)
        drain(b)

        hub.handle(a, frame(type="broadcast", channel="room1", data={"x": 1}))

        assert drain(b) == [{"type": "broadcast", "from": "1.1.1.1", "channel": "room1", "data": {"x": 1}}]
        assert drain(a) == []

    def test_state_scenario(self, hub, connect):
        a = connect()
        hub.handle(a, frame(type="state", channel="cfg", action="add", data={"k": 1}))
        hub.handle(a, frame(type="state", channel="cfg", action="remove", data=["k"]))
        hub.handle(a, frame(type="state", channel="cfg", action="get", reqId=4))

        added, removed, got = drain(a)
        assert added == {"type": "state", "action": "add", "result": {"cfg": {"k": 1}}}
        assert removed["result"] == {"cfg": {}}
        assert got == {"type": "state", "action": "get", "result": {"cfg": {}}, "reqId": 4}

    def test_state_is_shared_between_connections(self, hub, connect):
        a = connect()
        b = connect()
        hub.handle(a, frame(type="state", channel="cfg", action="add", data={"theme": "dark"}))
        hub.handle(b, frame(type="state", channel="cfg", action="get"))

        assert drain(b)[0]["result"] == {"cfg": {"theme": "dark"}}

    def test_any_frame_marks_alive(self, hub, connect):
        a = connect()
        hub.registry.info(a).is_alive = False
        hub.handle(a, frame(type="ping"))
        assert hub.registry.info(a).is_alive is True

    def test_frames_from_unregistered_connection_are_ignored(self, hub):
        stray = Connection(AsyncMock())
        hub.handle(stray, frame(type="ping"))
        assert drain(stray) == []

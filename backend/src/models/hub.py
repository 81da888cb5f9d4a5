import json
from typing import Any, Callable, Dict, Optional

from schemas import InboundMessage
from utilities import (
    make_error,
    make_pong,
    make_state,
    make_subscriptions,
    make_welcome,
    parse_channels,
    RelayError,
    NoChannelError,
    UnknownTypeError,
    HEARTBEAT_INTERVAL,
    PRODUCER_ENDPOINT,
    PRODUCER_EVENTS,
    PRODUCER_PASSWORD,
    RELAY_ENDPOINT,
    SYNC_FIELD,
)
from utilities.logging_config import get_logger

from .channels import ChannelRegistry
from .models import Connection, ConnectionInfo, Unauthenticated
from .producers import ProducerRouter, StatusPublisher
from .registry import ConnectionRegistry, LivenessMonitor
from .state import ChannelStateStore

logger = get_logger(__name__)

Handler = Callable[[Connection, InboundMessage], None]

class Hub:
    '''
    Owns every piece of shared relay state and dispatches inbound frames.

    All handlers are synchronous and only enqueue outbound frames, so the
    maps are never observed half-updated by another connection's handler.
    '''

    def __init__(self, password: str = PRODUCER_PASSWORD, sync_field: str = SYNC_FIELD,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL,
                 status_publisher: Optional[StatusPublisher] = None,
                 status_device: Optional[str] = None):
        self.registry = ConnectionRegistry()
        self.channels = ChannelRegistry(self.registry)
        self.state = ChannelStateStore()
        self.router = ProducerRouter(self.registry, password=password, sync_field=sync_field,
                                     status_publisher=status_publisher, status_device=status_device)
        self.liveness = LivenessMonitor(self.registry, interval=heartbeat_interval)

        relay = {
            "ping": self._ping,
            "heartbeat": self._heartbeat,
            "auth": self._auth,
            "connect": self._subscribe,
            "subscribe": self._subscribe,
            "unsubscribe": self._unsubscribe,
            "unsubscribe.all": self._unsubscribe_all,
            "broadcast": self._broadcast,
            "state": self._state,
        }
        producer = {
            "ping": self._ping,
            "heartbeat": self._heartbeat,
            "auth": self._auth,
            "request": self._request,
        }
        for kind in PRODUCER_EVENTS:
            producer[kind] = self._producer_event
        self._handlers: Dict[str, Dict[str, Handler]] = {
            RELAY_ENDPOINT: relay,
            PRODUCER_ENDPOINT: producer,
        }

    # -------------- Lifecycle --------------
    def connect(self, connection: Connection, address: str, endpoint: str = RELAY_ENDPOINT) -> ConnectionInfo:
        if endpoint == PRODUCER_ENDPOINT:
            info = self.registry.register(connection, address, endpoint, role=Unauthenticated())
        else:
            info = self.registry.register(connection, address, endpoint)
            connection.send(make_welcome(address))
        return info

    def disconnect(self, connection: Connection) -> Optional[ConnectionInfo]:
        return self.registry.unregister(connection)

    # -------------- Dispatch --------------
    def handle(self, connection: Connection, raw: Any) -> None:
        """Process one text frame from `connection`."""
        info = self.registry.info(connection)
        if info is None or not connection.is_open:
            return
        # any traffic proves the peer is alive
        info.is_alive = True
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            connection.send(make_error("invalid-json"))
            return
        if not isinstance(payload, dict):
            connection.send(make_error("type-unknown"))
            return
        message = InboundMessage.model_validate(payload)
        handler = None
        if isinstance(message.type, str):
            handler = self._handlers[info.endpoint].get(message.type)
        try:
            if handler is None:
                raise UnknownTypeError(f"unknown type: {message.type}")
            handler(connection, message)
        except RelayError as exc:
            connection.send(make_error(exc.reason))
        except Exception:
            logger.exception("Handler failed", type=message.type, address=info.address)
            connection.send(make_error("internal"))

    # -------------- Handlers --------------
    def _ping(self, connection: Connection, message: InboundMessage) -> None:
        connection.send(make_pong(message.id))

    def _heartbeat(self, connection: Connection, message: InboundMessage) -> None:
        self.registry.mark_alive(connection)

    def _auth(self, connection: Connection, message: InboundMessage) -> None:
        self.router.authenticate(connection, message.password, message.device)

    def _subscribe(self, connection: Connection, message: InboundMessage) -> None:
        subscriptions = self.channels.subscribe(connection, parse_channels(message.channel))
        reply = "connected" if message.type == "connect" else "subscribed"
        connection.send(make_subscriptions(reply, subscriptions))

    def _unsubscribe(self, connection: Connection, message: InboundMessage) -> None:
        subscriptions = self.channels.unsubscribe(connection, parse_channels(message.channel))
        connection.send(make_subscriptions("unsubscribed", subscriptions))

    def _unsubscribe_all(self, connection: Connection, message: InboundMessage) -> None:
        self.channels.unsubscribe_all(connection)
        connection.send({"type": "unsubscribed.all"})

    def _broadcast(self, connection: Connection, message: InboundMessage) -> None:
        self.channels.broadcast(connection, parse_channels(message.channel), message.data)

    def _state(self, connection: Connection, message: InboundMessage) -> None:
        channels = parse_channels(message.channel)
        if not channels:
            raise NoChannelError()
        result = self.state.apply(message.action, channels, message.data)
        connection.send(make_state(message.action, result, message.req_id))

    def _producer_event(self, connection: Connection, message: InboundMessage) -> None:
        self.router.emit(connection, message.type, message.data)

    def _request(self, connection: Connection, message: InboundMessage) -> None:
        self.router.route_request(connection, message.device, message.data)

"""
Reconnecting client for the relay.

RelayClient keeps one logical session alive across physical reconnects.
Every outbound frame goes through a FIFO queue that is drained while a
socket is open and simply accumulates while it is not; after each connect
the remembered subscriptions are replayed with a single subscribe frame.

    async with RelayClient("ws://localhost:8000/ws") as client:
        client.on(print)
        client.subscribe(["room1", "room2"])
        client.broadcast({"x": 1}, "room1")
        doc = await client.state_get("cfg")
"""

import asyncio
import itertools
import json
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from utilities import RECONNECT_BACKOFF, RECONNECT_DELAY, RECONNECT_MAX_DELAY
from utilities.logging_config import get_logger

logger = get_logger(__name__)

Listener = Callable[[Any], None]
Channels = Union[str, Iterable[str]]


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _as_list(channels: Channels) -> List[str]:
    if isinstance(channels, str):
        return [channels]
    return list(channels)


class RelayClient:
    def __init__(self, url: str, reconnect_delay: float = RECONNECT_DELAY,
                 backoff: float = RECONNECT_BACKOFF, max_delay: float = RECONNECT_MAX_DELAY,
                 connect: Callable = websockets.connect):
        self.url = url
        self.reconnect_delay = reconnect_delay
        # 1.0 keeps the retry delay fixed
        self.backoff = backoff
        self.max_delay = max_delay
        self._connect = connect

        self.state = ClientState.DISCONNECTED
        # serialized frames, oldest first
        self.queue: Deque[str] = deque()
        self.subscriptions: Set[str] = set()
        self.listeners: List[Listener] = []
        # reqId -> future resolved by the matching state reply; no expiry
        self.pending: Dict[int, asyncio.Future] = {}
        self.reconnects = 0

        self._req_ids = itertools.count(1)
        self._credentials: Optional[dict] = None
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._wakeup = asyncio.Event()
        self._connected = asyncio.Event()

    # -------------- Lifecycle --------------
    @property
    def connected(self) -> bool:
        return self.state is ClientState.CONNECTED

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._stopping = False
        self._task = asyncio.create_task(self._run())
        return self._task

    async def wait_connected(self) -> None:
        await self._connected.wait()

    async def disconnect(self) -> None:
        """Stop reconnecting, close the socket and forget subscriptions."""
        self._stopping = True
        self.subscriptions.clear()
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for future in self.pending.values():
            future.cancel()
        self.pending.clear()
        self.state = ClientState.DISCONNECTED

    async def __aenter__(self) -> "RelayClient":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    async def _run(self) -> None:
        delay = self.reconnect_delay
        while not self._stopping:
            self.state = ClientState.CONNECTING
            try:
                async with self._connect(self.url) as ws:
                    delay = self.reconnect_delay
                    await self._session(ws)
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.info("Relay connection lost", url=self.url, error=str(exc))
            except Exception:
                logger.exception("Relay session failed", url=self.url)
            finally:
                self._ws = None
                self._connected.clear()
                self.state = ClientState.DISCONNECTED
            if self._stopping:
                break
            self.reconnects += 1
            logger.debug("Reconnecting", url=self.url, delay=delay)
            await asyncio.sleep(delay)
            delay = min(delay * self.backoff, self.max_delay)

    async def _session(self, ws) -> None:
        self._ws = ws
        self._on_open()
        self.state = ClientState.CONNECTED
        self._connected.set()
        logger.info("Connected to relay", url=self.url)
        sender = asyncio.create_task(self._sender(ws))
        try:
            async for raw in ws:
                self._handle(raw)
        finally:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass

    def _on_open(self) -> None:
        # credentials first, then whatever queued up offline, then one resubscribe
        if self.subscriptions:
            self.queue.append(json.dumps({"type": "subscribe", "channel": sorted(self.subscriptions)}))
        if self._credentials is not None:
            self.queue.appendleft(json.dumps(self._credentials))
        self._wakeup.set()

    async def _sender(self, ws) -> None:
        while True:
            while self.queue:
                raw = self.queue[0]
                try:
                    await ws.send(raw)
                except ConnectionClosed:
                    # leave the frame queued for the next connection
                    return
                except Exception:
                    logger.exception("Dropping frame that could not be sent", url=self.url)
                self.queue.popleft()
            self._wakeup.clear()
            await self._wakeup.wait()

    # -------------- Inbound --------------
    def on(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def _handle(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            message = raw
        if isinstance(message, dict):
            kind = message.get("type")
            req_id = message.get("reqId")
            if kind == "state" and isinstance(req_id, int) and req_id in self.pending:
                future = self.pending.pop(req_id)
                if not future.done():
                    future.set_result(message.get("result"))
                return
        for listener in list(self.listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Listener failed")

    # -------------- Outbound --------------
    def send(self, message: dict) -> None:
        """Queue one frame. Raises TypeError or ValueError if it is not JSON-serializable."""
        self.queue.append(json.dumps(message))
        self._wakeup.set()

    def subscribe(self, channels: Channels) -> None:
        names = _as_list(channels)
        self.subscriptions.update(names)
        self.send({"type": "subscribe", "channel": names})

    def unsubscribe(self, channel: str) -> None:
        if channel not in self.subscriptions:
            return
        self.subscriptions.discard(channel)
        self.send({"type": "unsubscribe", "channel": channel})

    def unsubscribe_all(self) -> None:
        if not self.subscriptions:
            return
        self.subscriptions.clear()
        self.send({"type": "unsubscribe.all"})

    def broadcast(self, data: Any, channels: Optional[Channels] = None) -> None:
        names = sorted(self.subscriptions) if channels is None else _as_list(channels)
        if not names:
            return
        self.send({"type": "broadcast", "channel": names, "data": data})

    def ping(self, ping_id: Optional[Any] = None) -> None:
        self.send({"type": "ping", "id": ping_id})

    def state_add(self, channels: Channels, data: dict) -> None:
        self.send({"type": "state", "action": "add", "channel": _as_list(channels), "data": data})

    def state_remove(self, channels: Channels, keys: Iterable[str]) -> None:
        self.send({"type": "state", "action": "remove", "channel": _as_list(channels), "data": list(keys)})

    def state_get(self, channels: Channels) -> asyncio.Future:
        """Resolves with {channel: document} once the matching reply arrives."""
        req_id = next(self._req_ids)
        future = asyncio.get_running_loop().create_future()
        self.send({"type": "state", "action": "get", "channel": _as_list(channels), "reqId": req_id})
        self.pending[req_id] = future
        return future

    # -------------- Producer side --------------
    def authenticate(self, password: str, device: Optional[str] = None) -> None:
        """Remember the credential; it is sent now and first after every reconnect."""
        self._credentials = {"type": "auth", "password": password, "device": device}
        if self.connected:
            self.send(dict(self._credentials))

    def emit(self, kind: str, data: Any) -> None:
        self.send({"type": kind, "data": data})

    def request(self, device: str, data: Any = None) -> None:
        self.send({"type": "request", "device": device, "data": data})

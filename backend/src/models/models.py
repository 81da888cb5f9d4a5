import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Set, Union

from utilities import make_error, CONNECTION_QUEUE_SIZE, RELAY_ENDPOINT
from utilities.logging_config import get_logger

logger = get_logger(__name__)

# ------------ Roles ------------
@dataclass(frozen=True)
class Unauthenticated:
    pass

@dataclass(frozen=True)
class Consumer:
    pass

@dataclass(frozen=True)
class Producer:
    device_id: str

Role = Union[Unauthenticated, Consumer, Producer]

# ------------ Per-connection metadata ------------
@dataclass(eq=False)
class ConnectionInfo:
    address: str
    endpoint: str = RELAY_ENDPOINT
    role: Role = field(default_factory=Consumer)
    is_alive: bool = True
    # one-shot flag for the producer sync field
    synced: bool = False
    subscriptions: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def device_id(self) -> Optional[str]:
        if isinstance(self.role, Producer):
            return self.role.device_id
        return None

# sentinel placed on the queue to close after pending frames are flushed
_CLOSE = object()

class Connection:
    ''' One accepted websocket plus its outbound queue.'''

    def __init__(self, websocket: Any, queue_size: int = CONNECTION_QUEUE_SIZE):
        self.websocket = websocket

        # sends never await the peer: frames accumulate up to queue_size
        # and the oldest is dropped when a slow peer falls behind
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.sender_task: Optional[asyncio.Task] = None
        self.open = True
        self.close_code: Optional[int] = None
        self.terminated = False

    @property
    def is_open(self) -> bool:
        return self.open

    def _drop_oldest(self) -> None:
        try:
            self.queue.get_nowait()
        except asyncio.QueueEmpty:
            pass

    def _enqueue(self, item) -> None:
        if self.queue.full():
            logger.warning("Outbound queue overflow, oldest frame dropped", queue_size=self.queue.maxsize)
            self._drop_oldest()
            if item is not _CLOSE and self.queue.maxsize > 1:
                self._drop_oldest()
                self.queue.put_nowait(make_error("slow-consumer"))
        self.queue.put_nowait(item)

    def send(self, message: dict) -> bool:
        if not self.open:
            return False
        self._enqueue(message)
        return True

    def probe(self) -> bool:
        """
        Ask the transport whether the peer is still there. Ping/pong control
        frames are exchanged by the server underneath (see main.run), which
        closes the socket when a pong is missed; nothing is queued here.
        """
        if not self.open:
            return False
        state = getattr(self.websocket, "client_state", None)
        return state is None or state.name == "CONNECTED"

    def close(self, code: int = 1000) -> None:
        """Close once every frame queued so far has been written."""
        if not self.open:
            return
        self.open = False
        self.close_code = code
        self._enqueue(_CLOSE)

    async def terminate(self) -> None:
        """Drop the connection now, discarding anything still queued."""
        if self.terminated:
            return
        self.terminated = True
        self.open = False
        if self.sender_task and not self.sender_task.done():
            self.sender_task.cancel()
            try:
                await self.sender_task
            except asyncio.CancelledError:
                pass
        try:
            await self.websocket.close(code=1001)
        except (RuntimeError, OSError) as exc:
            # already closed by the peer or by the sender loop
            logger.debug("Close after terminate ignored", error=str(exc))

    async def flushed(self) -> None:
        """Wait until the sender loop has written everything and stopped."""
        if self.sender_task is not None:
            await self.sender_task

    def start(self) -> asyncio.Task:
        self.sender_task = asyncio.create_task(self._sender_loop())
        return self.sender_task

    async def _sender_loop(self) -> None:
        try:
            while True:
                item = await self.queue.get()
                if item is _CLOSE:
                    await self.websocket.close(code=self.close_code or 1000)
                    break
                await self.websocket.send_text(json.dumps(item))
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            # broken pipe / closed socket -> the connection is dead
            logger.debug("Send failed, marking connection closed", error=str(exc))
        finally:
            self.open = False

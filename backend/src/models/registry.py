import asyncio
from typing import Callable, Dict, List, Optional, Tuple

from utilities import HEARTBEAT_INTERVAL, RELAY_ENDPOINT
from utilities.logging_config import get_logger

from .models import Connection, ConnectionInfo, Role

logger = get_logger(__name__)

CleanupHook = Callable[[Connection, ConnectionInfo], None]

class ConnectionRegistry:
    ''' Every open connection and its metadata.'''

    def __init__(self):
        self._connections: Dict[Connection, ConnectionInfo] = {}
        self._cleanup_hooks: List[CleanupHook] = []

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection) -> bool:
        return connection in self._connections

    def on_unregister(self, hook: CleanupHook) -> None:
        self._cleanup_hooks.append(hook)

    def register(self, connection: Connection, address: str,
                 endpoint: str = RELAY_ENDPOINT, role: Optional[Role] = None) -> ConnectionInfo:
        info = ConnectionInfo(address=address, endpoint=endpoint)
        if role is not None:
            info.role = role
        self._connections[connection] = info
        logger.debug("Connected", address=address, endpoint=endpoint)
        return info

    def unregister(self, connection: Connection) -> Optional[ConnectionInfo]:
        """Remove the connection and run cleanup hooks. Safe to call twice."""
        info = self._connections.pop(connection, None)
        if info is None:
            return None
        for hook in self._cleanup_hooks:
            hook(connection, info)
        logger.debug("Disconnected", address=info.address, endpoint=info.endpoint)
        return info

    def info(self, connection: Connection) -> Optional[ConnectionInfo]:
        return self._connections.get(connection)

    def mark_alive(self, connection: Connection) -> None:
        info = self._connections.get(connection)
        if info:
            info.is_alive = True

    def all_connections(self, endpoint: Optional[str] = None) -> List[Connection]:
        return [c for c, i in self._connections.items() if endpoint is None or i.endpoint == endpoint]

    def items(self) -> List[Tuple[Connection, ConnectionInfo]]:
        return list(self._connections.items())


class LivenessMonitor:
    '''
    Two-strike dead peer detector: each tick checks every connection's
    transport and terminates those already found dead on the previous tick
    with no inbound frame since.
    '''

    def __init__(self, registry: ConnectionRegistry, interval: float = HEARTBEAT_INTERVAL):
        self.registry = registry
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def tick(self) -> int:
        terminated = 0
        for connection, info in self.registry.items():
            if not info.is_alive:
                logger.info("Terminating dead connection", address=info.address)
                await connection.terminate()
                self.registry.unregister(connection)
                terminated += 1
                continue
            # a False here is forgiven if the peer sends a frame before the next tick
            info.is_alive = connection.probe()
        return terminated

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Liveness tick failed")

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

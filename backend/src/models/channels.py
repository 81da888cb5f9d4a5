from typing import Any, Dict, FrozenSet, Iterable, List, Set

from utilities import make_broadcast, NoChannelError
from utilities.logging_config import get_logger

from .models import Connection, ConnectionInfo
from .registry import ConnectionRegistry

logger = get_logger(__name__)

class ChannelRegistry:
    '''
    Channel name -> subscribers. A name is only present while at least one
    connection subscribes to it.
    '''

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._channels: Dict[str, Set[Connection]] = {}
        registry.on_unregister(self._drop)

    def __contains__(self, name: str) -> bool:
        return name in self._channels

    def subscribers(self, name: str) -> FrozenSet[Connection]:
        return frozenset(self._channels.get(name, ()))

    def counts(self) -> Dict[str, int]:
        return {name: len(subs) for name, subs in self._channels.items()}

    def subscribe(self, connection: Connection, names: Iterable[str]) -> Set[str]:
        info = self.registry.info(connection)
        if info is None:
            return set()
        for name in names:
            self._channels.setdefault(name, set()).add(connection)
            info.subscriptions.add(name)
        return info.subscriptions

    def unsubscribe(self, connection: Connection, names: Iterable[str]) -> Set[str]:
        info = self.registry.info(connection)
        subscriptions = info.subscriptions if info else set()
        for name in names:
            self._remove(connection, name)
            subscriptions.discard(name)
        return subscriptions

    def unsubscribe_all(self, connection: Connection) -> None:
        info = self.registry.info(connection)
        if info is not None:
            self.unsubscribe(connection, list(info.subscriptions))

    def _remove(self, connection: Connection, name: str) -> None:
        subs = self._channels.get(name)
        if subs is None:
            return
        subs.discard(connection)
        if not subs:
            del self._channels[name]

    def _drop(self, connection: Connection, info: ConnectionInfo) -> None:
        # registry entry is already gone, so work from the detached info
        for name in list(info.subscriptions):
            self._remove(connection, name)
        info.subscriptions.clear()

    def broadcast(self, sender: Connection, names: List[str], payload: Any) -> int:
        """
        Deliver payload once per distinct open subscriber across `names`,
        never back to the sender. The envelope names the first requested
        channel the subscriber matched on.
        """
        if not names:
            raise NoChannelError()
        origin = self.registry.info(sender)
        address = origin.address if origin else None
        sent: Set[Connection] = set()
        for name in names:
            for connection in self._channels.get(name, ()):
                if connection is sender or connection in sent or not connection.is_open:
                    continue
                sent.add(connection)
                connection.send(make_broadcast(address, name, payload))
        logger.debug("Broadcast", address=address, channels=names, delivered=len(sent))
        return len(sent)

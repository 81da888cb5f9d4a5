import asyncio
import hmac
import json
from typing import Any, Dict, Optional, Protocol, Set

from utilities import (
    make_auth_failed,
    make_auth_ok,
    make_offline,
    make_producer_event,
    make_request,
    DeviceOfflineError,
    NoDeviceError,
    NotProducerError,
    PRODUCER_ENDPOINT,
    PRODUCER_PASSWORD,
    SYNC_FIELD,
    UNKNOWN_DEVICE,
)
from utilities.logging_config import get_logger

from .models import Connection, ConnectionInfo, Producer
from .registry import ConnectionRegistry

logger = get_logger(__name__)

class StatusPublisher(Protocol):
    ''' Outside integration that shows one status line per update.'''

    async def publish(self, label: str, text: str) -> None:
        ...

def status_text(kind: str, data: Any) -> str:
    if isinstance(data, dict) and isinstance(data.get("status"), str):
        return data["status"]
    return f"{kind}: {json.dumps(data, separators=(',', ':'), default=str)}"

class ProducerRegistry:
    ''' device id -> the connection holding that device's session.'''

    def __init__(self):
        self._devices: Dict[str, Connection] = {}

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def devices(self):
        return sorted(self._devices)

    def get(self, device_id: str) -> Optional[Connection]:
        return self._devices.get(device_id)

    def claim(self, device_id: str, connection: Connection) -> Optional[Connection]:
        """Last writer wins; returns the connection that held the slot before."""
        previous = self._devices.get(device_id)
        self._devices[device_id] = connection
        return previous

    def release(self, device_id: str, connection: Connection) -> bool:
        # a stale session must not evict a newer one for the same device
        if self._devices.get(device_id) is not connection:
            return False
        del self._devices[device_id]
        return True


class ProducerRouter:
    '''
    Authenticates producers and fans their events out to every other
    connection on the producer endpoint.

    The sync field (an icon reference, typically) is sent to each receiver
    only on its first delivery; afterwards it is stripped, and receivers are
    expected to keep the value they saw first.
    '''

    def __init__(self, registry: ConnectionRegistry, password: str = PRODUCER_PASSWORD,
                 sync_field: str = SYNC_FIELD, status_publisher: Optional[StatusPublisher] = None,
                 status_device: Optional[str] = None):
        self.registry = registry
        self.password = password
        self.sync_field = sync_field
        self.status_publisher = status_publisher
        self.status_device = status_device
        self.producers = ProducerRegistry()
        # device id -> last value seen for the sync field
        self.last_known: Dict[str, Any] = {}
        self._status_tasks: Set[asyncio.Task] = set()
        registry.on_unregister(self._drop)

    # -------------- Authentication --------------
    def authenticate(self, connection: Connection, password: Any, device: Any = None) -> bool:
        info = self.registry.info(connection)
        if info is None:
            return False
        if not isinstance(password, str) or not hmac.compare_digest(password.encode(), self.password.encode()):
            logger.warning("Producer authentication failed", address=info.address)
            connection.send(make_auth_failed())
            connection.close(code=1008)
            return False
        device_id = str(device) if device else UNKNOWN_DEVICE
        if info.device_id and info.device_id != device_id:
            # re-auth under a new id gives up the old slot
            self.producers.release(info.device_id, connection)
        info.role = Producer(device_id)
        previous = self.producers.claim(device_id, connection)
        if previous is not None and previous is not connection:
            logger.info("Producer session replaced", device=device_id)
        connection.send(make_auth_ok(device_id))
        logger.info("Producer authenticated", device=device_id, address=info.address)
        return True

    # -------------- Events --------------
    def emit(self, connection: Connection, kind: str, data: Any) -> int:
        info = self.registry.info(connection)
        if info is None or not isinstance(info.role, Producer):
            raise NotProducerError(f"{kind} requires an authenticated producer")
        device_id = info.role.device_id
        if isinstance(data, dict) and self.sync_field in data:
            self.last_known[device_id] = data[self.sync_field]
        delivered = 0
        for receiver, receiver_info in self.registry.items():
            if receiver is connection or receiver_info.endpoint != PRODUCER_ENDPOINT or not receiver.is_open:
                continue
            receiver.send(make_producer_event(kind, self._payload_for(receiver_info, device_id, data), device_id))
            delivered += 1
        self._publish_status(device_id, kind, data)
        return delivered

    def _payload_for(self, receiver: ConnectionInfo, device_id: str, data: Any) -> Any:
        first = not receiver.synced
        receiver.synced = True
        if not isinstance(data, dict):
            return data
        payload = {k: v for k, v in data.items() if k != self.sync_field}
        # first delivery carries the cached value, which may predate this event
        if first and device_id in self.last_known:
            payload[self.sync_field] = self.last_known[device_id]
        return payload

    def route_request(self, connection: Connection, device: Any, data: Any = None) -> None:
        if not device:
            raise NoDeviceError()
        target = self.producers.get(str(device))
        if target is None or not target.is_open:
            raise DeviceOfflineError(f"device {device} is not connected")
        info = self.registry.info(connection)
        target.send(make_request(str(device), info.address if info else None, data))

    # -------------- Status integration --------------
    def _publish_status(self, device_id: str, kind: str, data: Any) -> None:
        if self.status_publisher is None or device_id != self.status_device:
            return
        task = asyncio.create_task(self._safe_publish(device_id, status_text(kind, data)))
        self._status_tasks.add(task)
        task.add_done_callback(self._status_tasks.discard)

    async def _safe_publish(self, label: str, text: str) -> None:
        try:
            await self.status_publisher.publish(label, text)
        except Exception:
            # never let the integration affect routing
            logger.exception("Status publish failed", label=label)

    # -------------- Disconnect --------------
    def _drop(self, connection: Connection, info: ConnectionInfo) -> None:
        device_id = info.device_id
        if device_id is None or not self.producers.release(device_id, connection):
            return
        logger.info("Producer disconnected", device=device_id)
        notice = make_offline(device_id)
        for receiver in self.registry.all_connections(PRODUCER_ENDPOINT):
            if receiver.is_open:
                receiver.send(notice)

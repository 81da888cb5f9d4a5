import json
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat()

# -------------- Inbound helpers --------------
def parse_channels(value: Any) -> List[str]:
    """
    Accepts a single name, a list of names, or a JSON array encoded in a string.
    Anything malformed degrades to an empty list.
    """
    if not value:
        return []
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
        if not isinstance(value, list):
            return []
    if isinstance(value, list):
        # only scalars can name a channel
        return [str(v) for v in value if isinstance(v, (str, int, float)) and not isinstance(v, bool)]
    return [str(value)]

def client_address(websocket) -> str:
    forwarded = websocket.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if websocket.client is None:
        return "unknown"
    return websocket.client.host

# Server -> client messages are built as dicts
def make_error(reason: str, **extra):
    return {"type": "error", "reason": reason, **extra}

def make_pong(request_id: Optional[Any]):
    msg = {"type": "pong", "time": now_ts()}
    if request_id:
        msg["id"] = request_id
    return msg

def make_welcome(address: str):
    return {"type": "welcome", "address": address}

def make_broadcast(sender: Optional[str], channel: str, data: Any):
    return {"type": "broadcast", "from": sender, "channel": channel, "data": data}

def make_subscriptions(kind: str, subscriptions: Iterable[str]):
    return {"type": kind, "subscribed": sorted(subscriptions)}

def make_state(action: str, result: dict, request_id: Optional[Any] = None):
    msg = {"type": "state", "action": action, "result": result}
    if request_id is not None:
        msg["reqId"] = request_id
    return msg

# Producer endpoint
def make_auth_ok(device: str):
    return {"type": "auth_ok", "device": device}

def make_auth_failed():
    return {"type": "auth_failed"}

def make_producer_event(kind: str, data: Any, device: str):
    return {"type": kind, "data": data, "device": device, "time": now_ts()}

def make_offline(device: str):
    return {"type": "offline", "device": device, "time": now_ts()}

def make_request(device: str, sender: Optional[str], data: Any):
    return {"type": "request", "device": device, "from": sender, "data": data}

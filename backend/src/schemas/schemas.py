from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

class InboundMessage(BaseModel):
    ''' One client frame; unknown keys are kept but ignored.'''

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # left loose so dispatch can answer a wrong-typed value with type-unknown
    type: Any = None
    id: Optional[Any] = None
    # single name, list of names or a JSON array string
    channel: Any = None
    data: Any = None
    action: Any = None
    req_id: Optional[Any] = Field(default=None, alias="reqId")
    # producer endpoint
    password: Any = None
    device: Any = None

class HealthResponse(BaseModel):
    uptime_sec: int
    connections: int
    channels: int
    producers: List[str]

class ChannelStats(BaseModel):
    subscribers: int = 0
    state_keys: List[str] = []

class StatsResponse(BaseModel):
    channels: Dict[str, ChannelStats]

"""
Runtime settings for the relay.

Defaults live in constants.py; every field can be overridden from the
environment with the RELAY_ prefix (e.g. RELAY_PRODUCER_PASSWORD).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    CONNECTION_QUEUE_SIZE,
    HEARTBEAT_INTERVAL,
    HOST,
    LOG_LEVEL,
    PORT,
    PRODUCER_PASSWORD,
    SYNC_FIELD,
)


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_", env_file=".env", extra="ignore")

    host: str = HOST
    port: int = PORT
    producer_password: str = PRODUCER_PASSWORD
    # also the transport ping interval and pong timeout
    heartbeat_interval: float = Field(default=HEARTBEAT_INTERVAL, gt=0)
    queue_size: int = Field(default=CONNECTION_QUEUE_SIZE, gt=0)
    sync_field: str = SYNC_FIELD
    # producer whose events are mirrored to the status publisher
    status_device: Optional[str] = None
    log_level: str = LOG_LEVEL
    json_logs: bool = False


@lru_cache
def get_settings() -> RelaySettings:
    return RelaySettings()

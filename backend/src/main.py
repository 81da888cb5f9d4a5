from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from models import Connection, Hub, StatusPublisher
from schemas import ChannelStats, HealthResponse, StatsResponse
from utilities import client_address, PRODUCER_ENDPOINT, RELAY_ENDPOINT
from utilities.config import RelaySettings, get_settings
from utilities.logging_config import configure_logging, get_logger

logger = get_logger(__name__)


def create_app(settings: Optional[RelaySettings] = None,
               status_publisher: Optional[StatusPublisher] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.json_logs)

    hub = Hub(
        password=settings.producer_password,
        sync_field=settings.sync_field,
        heartbeat_interval=settings.heartbeat_interval,
        status_publisher=status_publisher,
        status_device=settings.status_device,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub.liveness.start()
        logger.info("Relay ready", heartbeat_interval=settings.heartbeat_interval)
        try:
            yield
        finally:
            await hub.liveness.stop()

    app = FastAPI(title="Channel relay", lifespan=lifespan)
    app.state.hub = hub
    app.state.started = datetime.now(timezone.utc)

    # -------------- WebSocket handling --------------
    async def serve(ws: WebSocket, endpoint: str):
        await ws.accept()
        connection = Connection(ws, queue_size=settings.queue_size)
        connection.start()
        hub.connect(connection, client_address(ws), endpoint)
        try:
            while True:
                data = await ws.receive_text()
                hub.handle(connection, data)
                if not connection.is_open:
                    # closed by the hub, e.g. a rejected credential
                    await connection.flushed()
                    break
        except WebSocketDisconnect:
            pass
        except Exception:
            # unexpected transport error: drop only this connection
            logger.exception("Connection failed", endpoint=endpoint)
        finally:
            hub.disconnect(connection)
            await connection.terminate()

    @app.websocket("/ws")
    async def relay_endpoint(ws: WebSocket):
        await serve(ws, RELAY_ENDPOINT)

    @app.websocket("/socket")
    async def producer_endpoint(ws: WebSocket):
        await serve(ws, PRODUCER_ENDPOINT)

    # -------------- REST endpoints --------------
    @app.get("/health", response_model=HealthResponse)
    async def rest_health():
        now = datetime.now(timezone.utc)
        return HealthResponse(
            uptime_sec=int((now - app.state.started).total_seconds()),
            connections=len(hub.registry),
            channels=len(hub.channels.counts()),
            producers=hub.router.producers.devices(),
        )

    @app.get("/stats", response_model=StatsResponse)
    async def rest_stats():
        out = {name: ChannelStats(subscribers=count) for name, count in hub.channels.counts().items()}
        for name, keys in hub.state.keys().items():
            out.setdefault(name, ChannelStats()).state_keys = keys
        return StatsResponse(channels=out)

    return app


app = create_app()


def uvicorn_config(settings: RelaySettings) -> dict:
    """
    Server options for uvicorn. Liveness probes are WebSocket ping control
    frames sent by uvicorn every heartbeat_interval; a peer that has not
    answered with a pong within the same interval is closed, and the serve
    loop above then runs the normal disconnect cleanup.
    """
    return {
        "host": settings.host,
        "port": settings.port,
        "ws_ping_interval": settings.heartbeat_interval,
        "ws_ping_timeout": settings.heartbeat_interval,
        "log_level": settings.log_level.lower(),
    }


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, **uvicorn_config(settings))


if __name__ == "__main__":
    run()

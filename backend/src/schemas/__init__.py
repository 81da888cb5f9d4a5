from .schemas import InboundMessage, HealthResponse, ChannelStats, StatsResponse  # noqa: F401

from .client import ClientState, RelayClient  # noqa: F401

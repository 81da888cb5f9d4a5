from .constants import *  # noqa: F401,F403
from .utility_functions import (  # noqa: F401
    now_ts,
    parse_channels,
    client_address,
    make_error,
    make_pong,
    make_welcome,
    make_broadcast,
    make_subscriptions,
    make_state,
    make_producer_event,
    make_offline,
    make_auth_ok,
    make_auth_failed,
    make_request,
)
from .exceptions import (  # noqa: F401
    RelayError,
    NoChannelError,
    UnknownTypeError,
    InvalidStateActionError,
    NotProducerError,
    NoDeviceError,
    DeviceOfflineError,
)

from .models import Connection, ConnectionInfo, Consumer, Producer, Role, Unauthenticated  # noqa: F401
from .registry import ConnectionRegistry, LivenessMonitor  # noqa: F401
from .channels import ChannelRegistry  # noqa: F401
from .state import ChannelStateStore  # noqa: F401
from .producers import ProducerRegistry, ProducerRouter, StatusPublisher  # noqa: F401
from .hub import Hub  # noqa: F401

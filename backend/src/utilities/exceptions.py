class RelayError(Exception):
    """Recoverable protocol error; `reason` goes on the wire as error.reason."""

    reason = "internal"

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)


class NoChannelError(RelayError):
    reason = "no-channel"


class UnknownTypeError(RelayError):
    reason = "type-unknown"


class InvalidStateActionError(RelayError):
    reason = "invalid-state-action"


class NotProducerError(RelayError):
    reason = "not-producer"


class NoDeviceError(RelayError):
    reason = "no-device"


class DeviceOfflineError(RelayError):
    reason = "device-offline"

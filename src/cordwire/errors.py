"""Exception types for the cordwire gateway client."""


class GatewayError(Exception):
    """Base exception for all cordwire errors."""
    pass


class GatewayConnectionError(GatewayError, ConnectionError):
    """The transport could not be opened or failed while in use."""
    pass


class MalformedFrameError(GatewayError):
    """A frame could not be decoded into a known control message."""
    def __init__(self, message: str, raw: object = None) -> None:
        super().__init__(message)
        self.raw = raw


class ProtocolViolation(GatewayError):
    """The server sent a frame that is not valid in the current session phase."""
    pass


class ZombieConnection(GatewayError):
    """A heartbeat went unacknowledged until the next tick."""
    pass


class SessionInvalidated(GatewayError):
    """The server declared the session invalid."""
    def __init__(self, message: str, resumable: bool = False) -> None:
        super().__init__(message)
        self.resumable = resumable


class SessionClosedError(GatewayError):
    """The session was closed explicitly and cannot be reused."""
    pass


class RestError(GatewayError):
    """A REST request failed or returned a non-success status."""
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

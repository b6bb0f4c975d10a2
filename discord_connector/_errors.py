from typing import List, Optional, Tuple

from wsproto.events import RejectConnection

__all__ = (
    'GatewayError',
    'AuthenticationError',
    'SessionLimitError',
    'ConnectionCancelled',
    'ProtocolError',
    'CloseGatewayConnection',
    'ConnectionRejected',
)


class GatewayError(Exception):
    """Base class for errors raised by discord-connector."""


class AuthenticationError(GatewayError):
    """Exception raised when the gateway connection info could not be fetched.

    This is raised after the REST client has exhausted its retries, for a
    status code that isn't worth retrying, or when the response body could
    not be understood. The Connector never retries this itself.
    """

    status_code: Optional[int]

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)

        self.status_code = status_code


class SessionLimitError(GatewayError):
    """Exception raised when no more sessions may be started right now.

    The `reset_after_ms` attribute is the amount of milliseconds to wait, at
    least, before trying to start a new session again.
    """

    reset_after_ms: int

    def __init__(self, reset_after_ms: int) -> None:
        super().__init__(
            f'Session start limit reached - resets after {reset_after_ms}ms'
        )

        self.reset_after_ms = reset_after_ms


class ConnectionCancelled(GatewayError):
    """Exception raised when a cancellation fired before an operation finished."""

    def __init__(self, message: str = 'Operation was cancelled') -> None:
        super().__init__(message)


class ProtocolError(GatewayError):
    """Exception raised when a frame couldn't be decoded into a gateway message."""


class CloseGatewayConnection(Exception):
    """Signalling exception notifying the socket should be closed.

    The `data` attribute contains any potentially last bytes to send before
    closing the TCP socket - or None indicating that nothing should be sent.

    The `code` attribute is the close code and the `reason` attribute optionally
    contains the reason of the closure.
    """

    code: Optional[int]
    reason: Optional[str]

    data: Optional[bytes]

    def __init__(
        self,
        data: Optional[bytes],
        code: Optional[int] = None,
        reason: Optional[str] = None
    ) -> None:
        super().__init__(
            f"{code if code is not None else ''}{' - '+reason if reason else ''}"
        )

        self.code = code
        self.reason = reason

        self.data = data


class ConnectionRejected(Exception):
    """Exception raised when the connection to the gateway was rejected.

    This means that the server rejected the WebSocket upgrade request. This is
    a fatal exception which cannot be recovered from (at least from
    discord-connector's point of view) depending on the status code.
    """

    code: int
    headers: List[Tuple[bytes, bytes]]

    def __init__(self, event: RejectConnection) -> None:
        super().__init__(
            f'The gateway rejected the WebSocket connection - Error code {event.status_code}'
        )

        self.code = event.status_code
        self.headers = event.headers

from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

import msgspec
from msgspec import UNSET, UnsetType

from ._opcode import Opcode

__all__ = (
    'ProtocolMessage',
    'GatewayEvent',
    'HelloPayload',
    'ReadyPayload',
    'ConnectionProperties',
    'IdentifyPayload',
    'ResumePayload',
    'SessionStartLimit',
    'ConnectionInfo',
    'Session',
)


T = TypeVar('T')


class ProtocolMessage(msgspec.Struct):
    """The part of an inbound payload needed to route it.

    `sequence` and `event_type` are only present for DISPATCH payloads.
    """

    opcode: int = msgspec.field(name='op')
    sequence: Optional[int] = msgspec.field(default=None, name='s')
    event_type: Optional[str] = msgspec.field(default=None, name='t')

    @property
    def is_dispatch(self) -> bool:
        return self.opcode == Opcode.DISPATCH


class GatewayEvent(msgspec.Struct, Generic[T]):
    """An inbound payload with `data` converted to a registered payload shape."""

    opcode: int = msgspec.field(name='op')
    data: Optional[T] = msgspec.field(default=None, name='d')
    sequence: Optional[int] = msgspec.field(default=None, name='s')
    event_type: Optional[str] = msgspec.field(default=None, name='t')


class HelloPayload(msgspec.Struct):
    heartbeat_interval: int


class ReadyPayload(msgspec.Struct):
    session_id: str
    v: int = 0
    user: Any = None
    guilds: List[Any] = msgspec.field(default_factory=list)
    resume_gateway_url: Optional[str] = None


class ConnectionProperties(msgspec.Struct):
    os: str
    browser: str
    device: str


class IdentifyPayload(msgspec.Struct):
    token: str
    properties: ConnectionProperties
    intents: int
    large_threshold: int = 50
    compress: bool = False
    presence: Union[Dict[str, Any], UnsetType] = UNSET


class ResumePayload(msgspec.Struct):
    token: str
    session_id: str
    seq: int


class SessionStartLimit(msgspec.Struct):
    remaining: int
    reset_after_ms: int = msgspec.field(name='reset_after')
    total: Optional[int] = None
    max_concurrency: int = 1


class ConnectionInfo(msgspec.Struct):
    """Response of the Get Gateway and Get Gateway Bot endpoints.

    `shards` and `session_start_limit` are only returned for bot tokens.
    """

    url: str
    shards: Optional[int] = None
    session_start_limit: Optional[SessionStartLimit] = None


class Session:
    """Resume state of one logical gateway session.

    Attributes:
        session_id: The session ID received in READY.
        last_sequence: Sequence of the last DISPATCH event received.
        heartbeat_interval_ms: Interval from HELLO, 0 until one is received.
        ack_pending: Whether the last HEARTBEAT is still waiting for an ACK.
    """

    session_id: Optional[str]
    last_sequence: Optional[int]
    heartbeat_interval_ms: int
    ack_pending: bool

    __slots__ = ('session_id', 'last_sequence', 'heartbeat_interval_ms', 'ack_pending')

    def __init__(
        self,
        session_id: Optional[str] = None,
        last_sequence: Optional[int] = None,
    ) -> None:
        # Half of the resume state is as good as none of it
        if session_id is None or last_sequence is None:
            session_id = last_sequence = None

        self.session_id = session_id
        self.last_sequence = last_sequence
        self.heartbeat_interval_ms = 0
        self.ack_pending = False

    def __repr__(self) -> str:
        return (
            f'<Session session_id={self.session_id!r} '
            f'last_sequence={self.last_sequence!r}>'
        )

    @property
    def resumable(self) -> bool:
        """Whether enough is known to RESUME instead of IDENTIFY."""
        return self.session_id is not None and self.last_sequence is not None

    def invalidate(self) -> None:
        """Forget the session, the next handshake will IDENTIFY."""
        self.session_id = None
        self.last_sequence = None

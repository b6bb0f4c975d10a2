import asyncio
import enum
import logging
import random
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import msgspec

from ._cancel import Cancellation
from ._codec import PayloadCodec
from ._config import Configuration
from ._credentials import Credentials
from ._errors import ConnectionCancelled, GatewayError, ProtocolError, SessionLimitError
from ._events import ALL, EventRegistry
from ._heartbeat import Heartbeat
from ._http import RestClient
from ._models import (
    ConnectionInfo, ConnectionProperties, GatewayEvent, HelloPayload,
    IdentifyPayload, ReadyPayload, ResumePayload, Session
)
from ._opcode import EventType, Opcode, WebSocketCloseCode
from ._transport import Transport, WebSocketTransport

__all__ = ('Connector', 'ConnectorState', 'DisconnectStatus')


logger = logging.getLogger(__name__)

# GUILDS | GUILD_MESSAGES
DEFAULT_INTENTS = 513

FrameListener = Callable[[Union[str, bytes]], Any]


class ConnectorState(enum.Enum):
    IDLE = 'idle'
    AUTHENTICATING = 'authenticating'
    CONNECTING = 'connecting'
    AWAITING_HELLO = 'awaiting_hello'
    RESUMING = 'resuming'
    IDENTIFYING = 'identifying'
    ACTIVE = 'active'
    INVALID_SESSION = 'invalid_session'
    DISCONNECTING = 'disconnecting'
    FAILED = 'failed'


class DisconnectStatus(enum.Enum):
    NOT_CONNECTED = 'not_connected'
    """No connection was ever established by this connector."""

    ALREADY_PENDING = 'already_pending'
    """A disconnect or cancellation is already in flight, or done."""

    PENDING = 'pending'
    """This call closed the connection."""


class Connector:
    """Connects to the gateway and keeps the connection alive.

    A connector drives one connection at a time but can be connected again
    after it ended, carrying the session forward so that the next handshake
    can RESUME. It never reconnects on its own: when the handle returned by
    `connect()` finishes the caller decides whether to call `reconnect()`,
    `close_code` and `should_reconnect()` help with that decision.

    Inbound payloads are dispatched to `events`, where the connector
    registers its own handlers the first time it connects. Those handlers
    are the only code changing `session`, and since payloads are dispatched
    one at a time they never run concurrently.

    Attributes:
        credentials: Token used for REST requests, IDENTIFY and RESUME.
        rest: Client used to fetch the gateway URL.
        config: Configuration receiving the last session and sequence.
        codec: Payload encoding, fixed for the connector's lifetime.
        events: Registry inbound payloads are dispatched to.
        session: Resume state, seeded from `config` when both values are set.
        heartbeat: Heartbeat subsystem of the current connection.
        state: Current state of the connection.
        connection_info: Connection info of the last connection.
        close_code: Close code of the last connection once it ended.
    """

    def __init__(
        self,
        credentials: Credentials,
        rest: RestClient,
        *,
        config: Optional[Configuration] = None,
        encoding: str = 'json',
        proxy: Optional[str] = None,
        transport_factory: Callable[[], Transport] = WebSocketTransport,
        registry: Optional[EventRegistry] = None,
        intents: int = DEFAULT_INTENTS,
        properties: Optional[ConnectionProperties] = None,
        large_threshold: int = 50,
        invalid_session_delay: Tuple[float, float] = (1.0, 5.0),
    ) -> None:
        self.credentials = credentials
        self.rest = rest
        self.config = config
        self.proxy = proxy

        self.codec = PayloadCodec(encoding)
        self.events = registry or EventRegistry(self.codec)

        if config is not None:
            self.session = Session(config.last_session, config.last_sequence)
        else:
            self.session = Session()
        self.heartbeat = Heartbeat(self.session)

        self.intents = intents
        self.properties = properties or ConnectionProperties(
            os=sys.platform, browser='discord-connector', device='discord-connector'
        )
        self.large_threshold = large_threshold
        self.invalid_session_delay = invalid_session_delay

        self.state = ConnectorState.IDLE
        self.connection_info: Optional[ConnectionInfo] = None
        self.close_code: Optional[int] = None

        self._transport_factory = transport_factory
        self._transport: Optional[Transport] = None

        self._external: Optional[Cancellation] = None
        self._internal = Cancellation()
        self._linked = self._internal

        self._run_task: Optional['asyncio.Task[None]'] = None
        self._heartbeat_task: Optional['asyncio.Task[None]'] = None
        self._disconnecting = False
        self._connecting = False
        self._established = False

        self._handlers_registered = False
        self._frame_listeners: List[FrameListener] = []

    @property
    def cancellation(self) -> Cancellation:
        """Signal cancelled whenever the current connection ends.

        A new signal is created for every connection.
        """
        return self._internal

    @property
    def running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    def _set_state(self, state: ConnectorState) -> None:
        if state is not self.state:
            logger.debug('Connector state %s -> %s', self.state.value, state.value)
            self.state = state

    def add_frame_listener(self, listener: FrameListener) -> None:
        """Call `listener` with every raw inbound frame, before it is dispatched."""
        self._frame_listeners.append(listener)

    def remove_frame_listener(self, listener: FrameListener) -> None:
        try:
            self._frame_listeners.remove(listener)
        except ValueError:
            pass

    @staticmethod
    def _check_cancellation(cancellation: Optional[Cancellation]) -> Cancellation:
        if cancellation is None:
            raise TypeError('A Cancellation is required')
        cancellation.raise_if_cancelled()
        return cancellation

    def _check_session_limit(self, info: ConnectionInfo) -> None:
        limit = info.session_start_limit
        if self.credentials.is_bot and limit is not None and limit.remaining < 1:
            logger.warning('Session start limit reached, resets after %sms', limit.reset_after_ms)
            raise SessionLimitError(limit.reset_after_ms)

    async def authenticate(self, cancellation: Cancellation) -> ConnectionInfo:
        """Fetch the information needed to connect.

        Raises:
            AuthenticationError: The REST request failed.
            SessionLimitError: A bot has no session starts left.
            ConnectionCancelled: `cancellation` fired first.
        """
        self._check_cancellation(cancellation)

        info = await self.rest.get_connection_info(cancellation, encoding=self.codec.encoding)
        self._check_session_limit(info)
        return info

    async def connect(
        self,
        cancellation: Cancellation,
        connection_info: Optional[ConnectionInfo] = None,
    ) -> 'asyncio.Task[None]':
        """Open a connection to the gateway.

        Without `connection_info` the connector authenticates first.

        Parameters:
            cancellation: Signal that, when cancelled, closes the connection.
            connection_info: Result of a previous `authenticate()`.

        Raises:
            TypeError: `cancellation` is None.
            ConnectionCancelled: `cancellation` is or got cancelled.
            AuthenticationError: Fetching the connection info failed.
            SessionLimitError: A bot has no session starts left.
            ConnectionRejected: The WebSocket upgrade was refused.
            RuntimeError: The connector is already connected.

        Returns:
            A task finishing when the connection has ended.
        """
        self._check_cancellation(cancellation)
        if self.running or self._connecting:
            raise RuntimeError('Connector is already connected')

        # Claimed before the first await so overlapping calls see it
        self._connecting = True
        try:
            try:
                if connection_info is None:
                    self._set_state(ConnectorState.AUTHENTICATING)
                    connection_info = await self.authenticate(cancellation)
                else:
                    self._check_session_limit(connection_info)
            except ConnectionCancelled:
                self._set_state(ConnectorState.IDLE)
                raise
            except GatewayError:
                self._set_state(ConnectorState.FAILED)
                raise

            return await self._connect(cancellation, connection_info)
        finally:
            self._connecting = False

    async def reconnect(self, cancellation: Optional[Cancellation] = None) -> 'asyncio.Task[None]':
        """Connect again using the connection info and session already held.

        A running connection is closed first, with a status allowing the
        session to be resumed.

        Parameters:
            cancellation: Signal to use, defaults to the one of the previous
                connection.

        Raises:
            RuntimeError: `connect()` was never called, or another connection
                attempt is in progress.
        """
        if self.connection_info is None or self._external is None:
            raise RuntimeError('Nothing to reconnect to, call connect() first')

        cancellation = self._check_cancellation(cancellation or self._external)
        if self._connecting:
            raise RuntimeError('Connector is already connecting')

        self._connecting = True
        try:
            if self.running:
                await self._transport.disconnect(WebSocketCloseCode.POLICY_VIOLATION, 'Reconnecting')
                await asyncio.wait({self._run_task})

            return await self._connect(cancellation, self.connection_info)
        finally:
            self._connecting = False

    async def _connect(
        self,
        cancellation: Cancellation,
        info: ConnectionInfo
    ) -> 'asyncio.Task[None]':
        self.connection_info = info
        self._external = cancellation

        # Allow the connector to be reused after a previous connection ended
        if self._internal.cancelled:
            self._internal = Cancellation()
        linked = Cancellation.link(cancellation, self._internal)
        self._linked = linked

        self._register_internal_handlers()

        self._set_state(ConnectorState.CONNECTING)
        transport = self._transport_factory()
        self._transport = transport
        self._disconnecting = False
        self.close_code = None

        try:
            await linked.guard(
                transport.connect(info.url, encoding=self.codec.encoding, proxy=self.proxy)
            )
        except ConnectionCancelled:
            self._internal.cancel()
            self._set_state(ConnectorState.IDLE)
            raise
        except BaseException:
            self._internal.cancel()
            self._set_state(ConnectorState.FAILED)
            raise

        self._established = True
        logger.info('Connected to the gateway at %s', info.url)
        self._set_state(ConnectorState.AWAITING_HELLO)

        self._run_task = asyncio.create_task(self._run(transport, linked), name='gateway-connector')
        return self._run_task

    async def disconnect(
        self,
        code: int = WebSocketCloseCode.NORMAL_CLOSURE,
        reason: Optional[str] = None,
    ) -> DisconnectStatus:
        """Close the connection.

        Closing with 1000 or 1001 ends the session on the gateway's side, use
        another code to keep it resumable.
        """
        if not self._established:
            return DisconnectStatus.NOT_CONNECTED

        if self._disconnecting or self._linked.cancelled:
            return DisconnectStatus.ALREADY_PENDING

        self._disconnecting = True
        self._set_state(ConnectorState.DISCONNECTING)

        try:
            await self._transport.disconnect(code, reason)
        finally:
            self._internal.cancel()
        return DisconnectStatus.PENDING

    async def _run(self, transport: Transport, cancellation: Cancellation) -> None:
        try:
            await cancellation.guard(self._pump(transport))
        except ConnectionCancelled:
            logger.info('Gateway connection cancelled')
        finally:
            await self._teardown(transport)

    async def _pump(self, transport: Transport) -> None:
        async for frame in transport.frames():
            for listener in tuple(self._frame_listeners):
                try:
                    listener(frame)
                except Exception:
                    logger.exception('Error in frame listener %r', listener)

            try:
                await self.events.dispatch(frame)
            except ProtocolError:
                logger.exception('Closing the connection after an undecodable payload')
                self._set_state(ConnectorState.FAILED)
                await transport.disconnect(WebSocketCloseCode.PROTOCOL_ERROR, 'Undecodable payload')
                return

    async def _teardown(self, transport: Transport) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception('Heartbeat loop failed')

        if transport.open:
            # Cancelling keeps the session resumable, disconnect() can end it
            await transport.disconnect(WebSocketCloseCode.POLICY_VIOLATION, 'Connection cancelled')

        self.close_code = transport.close_code
        self._internal.cancel()

        if self.state is not ConnectorState.FAILED:
            self._set_state(ConnectorState.IDLE)
        logger.info('Gateway connection ended with close code %s', self.close_code)

    async def _send_command(self, payload: Dict[str, Any]) -> None:
        await self._transport.send(self.codec.dumps(payload))

    async def _send(self, opcode: Opcode, data: Any) -> None:
        await self._send_command({'op': int(opcode), 'd': msgspec.to_builtins(data)})

    async def _handshake(self) -> None:
        if self.session.resumable:
            self._set_state(ConnectorState.RESUMING)
            logger.info('Resuming session %s at sequence %s',
                        self.session.session_id, self.session.last_sequence)
            await self._send(Opcode.RESUME, ResumePayload(
                token=self.credentials.token,
                session_id=self.session.session_id,
                seq=self.session.last_sequence,
            ))
        else:
            self._set_state(ConnectorState.IDENTIFYING)
            logger.info('Identifying a new session')
            await self._send(Opcode.IDENTIFY, IdentifyPayload(
                token=self.credentials.token,
                properties=self.properties,
                intents=self.intents,
                large_threshold=self.large_threshold,
            ))

    async def _close_unacknowledged(self) -> None:
        await self._transport.disconnect(
            WebSocketCloseCode.PROTOCOL_ERROR, 'Heartbeat not acknowledged'
        )

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()

        self._heartbeat_task = asyncio.create_task(
            self.heartbeat.run(
                self.session.heartbeat_interval_ms / 1000, self._linked,
                self._send_command, self._close_unacknowledged,
            ),
            name='gateway-heartbeat',
        )

    def _register_internal_handlers(self) -> None:
        # The registry outlives single connections
        if self._handlers_registered:
            return
        self._handlers_registered = True

        self.events.register(ALL, Any, self._on_any)
        self.events.register(Opcode.HELLO, HelloPayload, self._on_hello)
        self.events.register(Opcode.HEARTBEAT, Any, self._on_heartbeat_request)
        self.events.register(Opcode.HEARTBEAT_ACK, Any, self._on_heartbeat_ack)
        self.events.register(Opcode.RECONNECT, Any, self._on_reconnect_request)
        self.events.register(Opcode.INVALID_SESSION, Any, self._on_invalid_session)
        self.events.register(EventType.READY, ReadyPayload, self._on_ready)
        self.events.register(EventType.RESUMED, Any, self._on_resumed)

    def _on_any(self, event: GatewayEvent[Any]) -> None:
        if event.opcode == Opcode.DISPATCH and event.sequence is not None:
            self.session.last_sequence = event.sequence
            if self.config is not None:
                self.config.last_sequence = event.sequence

    async def _on_hello(self, event: GatewayEvent[HelloPayload]) -> None:
        if event.data is None:
            logger.warning('Received HELLO without a heartbeat interval')
            return

        # The gateway sends the interval in milliseconds
        self.session.heartbeat_interval_ms = event.data.heartbeat_interval
        logger.debug('Received HELLO with heartbeat interval %sms', event.data.heartbeat_interval)

        await self._handshake()
        self._start_heartbeat()

    async def _on_heartbeat_request(self, event: GatewayEvent[Any]) -> None:
        # Answered with a HEARTBEAT (op 1), not a HEARTBEAT_ACK (op 11), since
        # op 1 is what the gateway expects back. The regular timer and the
        # acknowledgment state are left alone.
        await self._send_command(self.heartbeat.payload())

    def _on_heartbeat_ack(self, event: GatewayEvent[Any]) -> None:
        self.heartbeat.acknowledge()

    def _on_ready(self, event: GatewayEvent[ReadyPayload]) -> None:
        self.session.session_id = event.data.session_id
        if self.config is not None:
            self.config.last_session = event.data.session_id

        logger.info('Session %s is ready', event.data.session_id)
        self._set_state(ConnectorState.ACTIVE)

    def _on_resumed(self, event: GatewayEvent[Any]) -> None:
        logger.info('Session %s resumed', self.session.session_id)
        self._set_state(ConnectorState.ACTIVE)

    async def _on_reconnect_request(self, event: GatewayEvent[Any]) -> None:
        logger.info('Gateway requested a reconnect, closing the connection')
        # Any code but 1000 and 1001 keeps the session resumable
        await self._transport.disconnect(WebSocketCloseCode.POLICY_VIOLATION, 'Reconnect requested')

    async def _on_invalid_session(self, event: GatewayEvent[Any]) -> None:
        self._set_state(ConnectorState.INVALID_SESSION)

        # Clients must not IDENTIFY again right away
        delay = random.uniform(*self.invalid_session_delay)
        logger.warning('Session was invalidated, identifying again in %.2fs', delay)
        if not await self._linked.sleep(delay):
            return

        self.session.invalidate()
        if self.config is not None:
            self.config.last_session = None
            self.config.last_sequence = None

        await self._handshake()

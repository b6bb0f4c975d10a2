import asyncio
import logging
from types import TracebackType
from typing import Any, Optional, Type

from ._cancel import Cancellation
from ._config import Configuration
from ._connector import Connector, DisconnectStatus, FrameListener
from ._credentials import Credentials
from ._events import EventRegistry
from ._http import RestClient
from ._models import ConnectionInfo, Session
from ._opcode import WebSocketCloseCode

__all__ = ('Gateway',)


logger = logging.getLogger(__name__)


class Gateway:
    """Entrypoint owning everything needed to stay connected to Discord.

    The gateway holds its own cancellation signal which every connection is
    linked to, so that `cancel()` tears down whatever is in progress. A
    cancelled gateway can be connected again, it then starts with a fresh
    signal.

    Example:

        async with Gateway(Credentials(token)) as gateway:
            @gateway.events.listen(EventType.MESSAGE_CREATE, dict)
            async def on_message(event):
                ...

            await (await gateway.connect())

    Attributes:
        credentials: Token used for REST and the gateway.
        config: Configuration the connector keeps resume state in.
        rest: REST client used to fetch connection info.
        connector: The connector driving connections.
    """

    def __init__(
        self,
        credentials: Credentials,
        config: Optional[Configuration] = None,
        *,
        rest: Optional[RestClient] = None,
        **options: Any,
    ) -> None:
        self.credentials = credentials
        self.config = config or Configuration()

        proxy = self.config.proxy.url
        self.rest = rest or RestClient(
            credentials,
            user_agent_url=self.config.user_agent_url,
            version=self.config.version,
            proxy=proxy,
        )

        options.setdefault('encoding', self.config.encoding)
        options.setdefault('proxy', proxy)
        self.connector = Connector(credentials, self.rest, config=self.config, **options)

        self._cancellation = Cancellation()

    @classmethod
    def from_config(cls, config: Configuration, **options: Any) -> 'Gateway':
        """Create a gateway using the token stored in `config`.

        Raises:
            ValueError: `config` holds no token.
        """
        if not config.auth_token:
            raise ValueError('Configuration has no auth_token')
        return cls(Credentials(config.auth_token), config, **options)

    async def __aenter__(self) -> 'Gateway':
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    @property
    def cancellation(self) -> Cancellation:
        """Signal every connection of this gateway is linked to."""
        return self._cancellation

    @property
    def events(self) -> EventRegistry:
        return self.connector.events

    @property
    def session(self) -> Session:
        return self.connector.session

    def _context(self, cancellation: Optional[Cancellation]) -> Cancellation:
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        if self._cancellation.cancelled:
            self._cancellation = Cancellation()

        if cancellation is None:
            return self._cancellation
        return Cancellation.link(cancellation, self._cancellation)

    async def authenticate(self, cancellation: Optional[Cancellation] = None) -> ConnectionInfo:
        """Fetch the connection info, see `Connector.authenticate()`."""
        return await self.connector.authenticate(self._context(cancellation))

    async def connect(
        self,
        cancellation: Optional[Cancellation] = None,
        connection_info: Optional[ConnectionInfo] = None,
    ) -> 'asyncio.Task[None]':
        """Connect to the gateway, see `Connector.connect()`.

        Parameters:
            cancellation: Additional signal closing the connection.
            connection_info: Result of a previous `authenticate()`.

        Returns:
            A task finishing when the connection has ended.
        """
        return await self.connector.connect(self._context(cancellation), connection_info)

    async def reconnect(self) -> 'asyncio.Task[None]':
        """Connect again with the previous connection info, resuming if possible."""
        if self._cancellation.cancelled:
            return await self.connector.reconnect(self._context(None))
        return await self.connector.reconnect()

    async def disconnect(
        self,
        code: int = WebSocketCloseCode.NORMAL_CLOSURE,
        reason: Optional[str] = None,
    ) -> DisconnectStatus:
        return await self.connector.disconnect(code, reason)

    def cancel(self) -> None:
        """Cancel the gateway's signal, ending any connection in progress."""
        self._cancellation.cancel()

    def add_frame_listener(self, listener: FrameListener) -> None:
        self.connector.add_frame_listener(listener)

    def remove_frame_listener(self, listener: FrameListener) -> None:
        self.connector.remove_frame_listener(listener)

    async def aclose(self) -> None:
        """Disconnect and release the REST client."""
        if self.connector.running:
            await self.connector.disconnect()
        self.cancel()
        await self.rest.aclose()

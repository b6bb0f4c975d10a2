import abc
import asyncio
import base64
import logging
import ssl
import zlib
from typing import AsyncIterator, Iterable, Optional, Tuple, Union
from urllib.parse import unquote, urlsplit

import h11
from wsproto.utilities import LocalProtocolError, RemoteProtocolError

from ._conn import GatewayConnection
from ._errors import CloseGatewayConnection
from ._opcode import WebSocketCloseCode

__all__ = ('Transport', 'WebSocketTransport')


logger = logging.getLogger(__name__)

RECEIVE_SIZE = 2 ** 16


class Transport(abc.ABC):
    """Duplex socket carrying encoded gateway payloads.

    A transport is used for one connection only, a new one is created for
    every connection attempt.

    Attributes:
        close_code: Close code of the connection once it has ended.
        close_reason: Close reason, if any, once the connection has ended.
    """

    close_code: Optional[int] = None
    close_reason: Optional[str] = None

    @property
    @abc.abstractmethod
    def open(self) -> bool:
        """Whether frames can currently be sent."""

    @abc.abstractmethod
    async def connect(self, url: str, *, encoding: str, proxy: Optional[str] = None) -> None:
        """Open the connection to `url` using the given payload encoding."""

    @abc.abstractmethod
    async def send(self, frame: Union[str, bytes]) -> None:
        """Send one frame, text for JSON and bytes for ETF.

        Raises:
            ConnectionError: The transport isn't open.
        """

    @abc.abstractmethod
    def frames(self) -> AsyncIterator[Union[str, bytes]]:
        """Iterate over inbound frames until the connection ends."""

    @abc.abstractmethod
    async def disconnect(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Close the connection, doing nothing if it already is closed."""


async def _open_tunnel(
    proxy: str, host: str, port: int
) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open a TCP tunnel to host:port through an HTTP proxy using CONNECT."""
    parts = urlsplit(proxy if '://' in proxy else 'http://' + proxy)
    reader, writer = await asyncio.open_connection(parts.hostname, parts.port or 8080)

    target = f'{host}:{port}'
    headers = [('Host', target)]
    if parts.username is not None:
        userinfo = f'{unquote(parts.username)}:{unquote(parts.password or "")}'
        headers.append(
            ('Proxy-Authorization', 'Basic ' + base64.b64encode(userinfo.encode()).decode())
        )

    conn = h11.Connection(h11.CLIENT)
    writer.write(conn.send(h11.Request(method='CONNECT', target=target, headers=headers)))
    writer.write(conn.send(h11.EndOfMessage()))
    await writer.drain()

    while True:
        event = conn.next_event()
        if event is h11.NEED_DATA:
            conn.receive_data(await reader.read(RECEIVE_SIZE))
            continue

        if isinstance(event, h11.Response):
            if not 200 <= event.status_code < 300:
                writer.close()
                raise ConnectionError(
                    f'Proxy refused to tunnel to {target} - Error code {event.status_code}'
                )
            return reader, writer

        if isinstance(event, h11.ConnectionClosed):
            writer.close()
            raise ConnectionError('Proxy closed the connection before tunnelling')


class WebSocketTransport(Transport):
    """Network layer for `GatewayConnection` using asyncio streams.

    Once connected a background task keeps reading from the socket: PINGs
    are answered, closing handshakes completed and frames queued up for
    `frames()`.
    """

    def __init__(
        self,
        *,
        compress: Union[str, bool, None] = None,
        close_timeout: float = 5.0,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.compress = compress
        self.close_timeout = close_timeout
        self._ssl_context = ssl_context

        self._conn: Optional[GatewayConnection] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional['asyncio.Task[None]'] = None

        self._frames: 'asyncio.Queue[Union[str, bytes, None]]' = asyncio.Queue()
        self._closed = asyncio.Event()

        self.close_code = None
        self.close_reason = None

    @property
    def open(self) -> bool:
        return self._conn is not None and self._conn.open and not self._closed.is_set()

    def _write(self, chunks: Iterable[bytes]) -> None:
        for chunk in chunks:
            if chunk:
                self._writer.write(chunk)

    def _flush_frames(self) -> None:
        for frame in self._conn.events():
            self._frames.put_nowait(frame)

    async def connect(self, url: str, *, encoding: str, proxy: Optional[str] = None) -> None:
        if self._conn is not None:
            raise RuntimeError('A WebSocketTransport can only be connected once')

        conn = GatewayConnection(url, encoding=encoding, compress=self.compress)
        host, port = conn.destination

        ssl_context = None
        if conn.secure:
            ssl_context = self._ssl_context or ssl.create_default_context()

        logger.info('Opening gateway socket to %s:%s', host, port)
        if proxy is not None:
            reader, writer = await _open_tunnel(proxy, host, port)
            if ssl_context is not None:
                await writer.start_tls(ssl_context, server_hostname=host)
        else:
            reader, writer = await asyncio.open_connection(host, port, ssl=ssl_context)

        self._conn, self._reader, self._writer = conn, reader, writer

        try:
            writer.write(conn.connect())
            await writer.drain()

            while not conn.open:
                data = await reader.read(RECEIVE_SIZE)
                if not data:
                    raise ConnectionError('Socket closed during the WebSocket handshake')
                self._write(conn.receive(data))
        except BaseException:
            writer.close()
            self._frames.put_nowait(None)
            self._closed.set()
            raise

        logger.debug('WebSocket handshake with %s completed', host)
        self._reader_task = asyncio.create_task(self._read_loop(), name='gateway-transport-recv')

    async def _read_loop(self) -> None:
        try:
            while True:
                self._flush_frames()

                data = await self._reader.read(RECEIVE_SIZE)
                self._write(self._conn.receive(data))
                await self._writer.drain()
        except CloseGatewayConnection as exc:
            if exc.data is not None:
                self._writer.write(exc.data)
            self.close_code, self.close_reason = exc.code, exc.reason
            logger.info('Gateway socket closed with code %s %s', exc.code, exc.reason or '')
        except (zlib.error, ValueError):
            logger.exception('Closing gateway socket after an undecodable frame')
            if self._conn.open:
                self._writer.write(
                    self._conn.close(WebSocketCloseCode.PROTOCOL_ERROR, 'Undecodable frame')
                )
            self.close_code = WebSocketCloseCode.PROTOCOL_ERROR
            self.close_reason = 'Undecodable frame'
        except (OSError, RuntimeError, LocalProtocolError, RemoteProtocolError):
            logger.exception('Gateway socket failed')
            self.close_code = WebSocketCloseCode.ABNORMAL_CLOSURE
        finally:
            self._flush_frames()
            self._writer.close()
            self._frames.put_nowait(None)
            self._closed.set()

    async def send(self, frame: Union[str, bytes]) -> None:
        if not self.open:
            raise ConnectionError('Gateway socket is not open')

        self._writer.write(self._conn.send(frame))
        await self._writer.drain()

    async def frames(self) -> AsyncIterator[Union[str, bytes]]:
        while True:
            frame = await self._frames.get()
            if frame is None:
                # Leave the end marker for anyone else iterating
                self._frames.put_nowait(None)
                return
            yield frame

    async def disconnect(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self._conn is None or self._closed.is_set():
            return

        if self._conn.open:
            logger.info('Closing gateway socket with code %s', code)
            self._write([self._conn.close(code, reason)])

        try:
            await asyncio.wait_for(self._closed.wait(), self.close_timeout)
        except asyncio.TimeoutError:
            logger.warning('Closing handshake timed out after %ss', self.close_timeout)
            if self.close_code is None:
                self.close_code, self.close_reason = code, reason

            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

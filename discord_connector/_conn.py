import zlib
from collections import deque
from typing import Deque, Generator, List, Optional, Tuple, Union
from urllib.parse import urlencode, urlsplit

from wsproto import ConnectionType, WSConnection
from wsproto.connection import ConnectionState
from wsproto.events import (
    BytesMessage, CloseConnection, Ping, RejectConnection, Request, TextMessage
)

from ._codec import ENCODINGS
from ._errors import CloseGatewayConnection, ConnectionRejected

__all__ = ('GatewayConnection',)


ZLIB_SUFFIX = b'\x00\x00\xff\xff'

API_VERSION = 10


class GatewayConnection:
    """Sans-I/O WebSocket connection to the gateway.

    This wraps a `wsproto.WSConnection` object and takes care of the parts of
    the WebSocket protocol the gateway cares about: the upgrade request, PING
    frames, the closing handshake and transport or payload decompression. It
    performs no I/O, see `WebSocketTransport` for the network layer.

    What comes out are complete frames: `str` when the encoding is JSON and
    `bytes` when it is ETF, ready to be decoded by a `PayloadCodec`.

    Attributes:
        host: The host to open a TCP socket to.
        port: The port to open a TCP socket to.
        path: Path of the WebSocket resource, without query parameters.
        secure: Whether TLS should be used (the URL used the wss scheme).
        encoding: Either 'json' or 'etf' for the encoding used.
        compress:
            If a boolean, indicates whether to use payload compression. On the
            other hand, if a string indicates the transport compression to use
            (can only be 'zlib-stream' at the moment).
    """

    host: str
    port: int
    path: str
    secure: bool
    encoding: str
    compress: Union[str, bool, None]

    __slots__ = (
        'host', 'port', 'path', 'secure', 'encoding', 'compress', '_events',
        '_proto', '_bytes_buffer', '_text_buffer', '_inflator',
    )

    def __init__(
        self,
        uri: str,
        *,
        encoding: str,
        compress: Union[str, bool, None] = None,
    ) -> None:
        """Initialize a gateway connection.

        Parameters:
            uri:
                URI to open a websocket to. This should be requested from the
                Get Gateway or Get Gateway Bot endpoints. A missing scheme is
                treated as 'wss'.
            encoding:
                Encoding to use, either 'json' for JSON text frames or 'etf'
                for binary ETF frames.
            compress:
                Transport compression to use, this is different from payload
                compression and both cannot be used at the same time. Specify
                'zlib-stream' for transport compression, or True when payload
                compression was requested when IDENTIFYing.
        """
        if encoding not in ENCODINGS:
            raise ValueError(f"Unknown encoding {encoding!r}, expected 'json' or 'etf'")

        if '://' not in uri:
            uri = 'wss://' + uri

        parts = urlsplit(uri)
        if parts.scheme not in {'ws', 'wss'}:
            raise ValueError(f'Unsupported WebSocket scheme {parts.scheme!r}')

        self.secure = parts.scheme == 'wss'
        self.host = parts.hostname or ''
        self.port = parts.port or (443 if self.secure else 80)
        self.path = parts.path or '/'

        self.encoding = encoding
        self.compress = compress

        self._events: Deque[Union[str, bytes]] = deque()  # Buffer of frames received

        self._proto = WSConnection(ConnectionType.CLIENT)

        self._bytes_buffer = bytearray()
        self._text_buffer = ''
        self._inflator = zlib.decompressobj()

    @property
    def query_params(self) -> str:
        """Query string selecting the API version, encoding and compression."""
        quote = {'v': API_VERSION, 'encoding': self.encoding}
        if self.compress == 'zlib-stream':
            quote['compress'] = self.compress
        return urlencode(quote)

    @property
    def destination(self) -> Tuple[str, int]:
        """The (host, port) pair to open the TCP socket to."""
        return self.host, self.port

    @property
    def open(self) -> bool:
        """Whether the WebSocket handshake completed and no closing started."""
        return self._proto.state == ConnectionState.OPEN

    @property
    def closing(self) -> bool:
        """Whether a closing handshake started or finished, nothing may be sent."""
        return self._proto.state in {
            ConnectionState.CLOSED, ConnectionState.LOCAL_CLOSING,
            ConnectionState.REMOTE_CLOSING
        }

    def events(self) -> Generator[Union[str, bytes], None, None]:
        """Yield and forget the frames completed so far."""
        while True:
            try:
                yield self._events.popleft()
            except IndexError:
                # There are no more frames to consume
                return

    def connect(self) -> bytes:
        """Bytes of the HTTP upgrade request opening the WebSocket.

        Afterwards, data should be received and passed to `receive()` until
        `open` becomes true.
        """
        return self._proto.send(Request(self.host, self.path + '?' + self.query_params))

    def send(self, frame: Union[str, bytes]) -> bytes:
        """Generate the bytes to send an encoded payload.

        Text is sent as a TEXT frame and bytes as a BINARY frame.
        """
        if isinstance(frame, str):
            return self._proto.send(TextMessage(frame))
        return self._proto.send(BytesMessage(frame))

    def close(self, code: int = 1000, reason: Optional[str] = None) -> bytes:
        """Bytes of a CLOSE frame starting the closing handshake.

        Keep feeding received bytes to `receive()` afterwards, the handshake is
        complete once it raises `CloseGatewayConnection`.

        Parameters:
            code:
                Close code sent to the gateway. 1000 and 1001 end the session,
                anything else allows a RESUME afterwards.
            reason:
                Optional human-readable reason for closing.
        """
        return self._proto.send(CloseConnection(code, reason))

    def _decompress(self, data: bytearray) -> Union[str, bytes]:
        if self.compress == 'zlib-stream':
            if len(data) < 4 or data[-4:] != ZLIB_SUFFIX:
                # A zlib-stream message always ends with a sync flush
                raise RuntimeError('Finished compressed message without ZLIB suffix')

            inflated = self._inflator.decompress(data)
        elif self.compress is True:
            inflated = zlib.decompress(data)
        elif self.encoding == 'etf':
            return bytes(data)
        else:
            raise RuntimeError('Received bytes message when no compression specified')

        if self.encoding == 'json':
            return inflated.decode('utf-8')
        return inflated

    def receive(self, data: Optional[bytes]) -> List[bytes]:
        """Feed bytes read from the socket.

        Some frames need an answer, a PING for example is answered with a
        PONG, so this returns bytes that must be written back.

        Parameters:
            data:
                The bytes received from the TCP socket, an empty byte string
                or None meaning that the socket reached EOF.

        Raises:
            ConnectionRejected: The WebSocket upgrade was refused.
            CloseGatewayConnection: The socket should be closed after sending
                the bytes attached to the exception.
            RuntimeError: Compressed message received with no compression.
            zlib.error: A compressed message could not be inflated.
            UnicodeDecodeError: An inflated JSON message isn't valid UTF-8.

        Returns:
            Chunks to write to the socket. Completed frames are collected
            through `events()`.
        """
        # wsproto signals EOF with None
        if data is not None and len(data) == 0:
            data = None

        self._proto.receive_data(data)

        res = []

        for event in self._proto.events():
            if isinstance(event, Ping):
                res.append(self._proto.send(event.response()))
                continue

            elif isinstance(event, RejectConnection):
                raise ConnectionRejected(event)

            elif isinstance(event, CloseConnection):
                if self._proto.state == ConnectionState.CLOSED:
                    # Either our CLOSE was answered or the socket hit EOF
                    raise CloseGatewayConnection(None, event.code, event.reason)
                else:
                    # The gateway started closing, echo its CLOSE
                    raise CloseGatewayConnection(
                        self._proto.send(event.response()), event.code, event.reason
                    )

            elif isinstance(event, TextMessage):
                # Text frames are never compressed
                self._text_buffer += event.data

                if not event.message_finished:
                    continue

                frame: Union[str, bytes] = self._text_buffer
                self._text_buffer = ''

            elif isinstance(event, BytesMessage):
                self._bytes_buffer.extend(event.data)

                if not event.message_finished:
                    continue

                frame = self._decompress(self._bytes_buffer)
                self._bytes_buffer = bytearray()

            else:
                # AcceptConnection and Pong carry no frame
                continue

            self._events.append(frame)

        return res

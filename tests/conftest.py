import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import pytest

from discord_connector import (
    Configuration, ConnectionInfo, Connector, Credentials, SessionStartLimit, Transport
)


class FakeTransport(Transport):
    """In-memory transport recording what the connector sends."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.disconnects: List[int] = []
        self.connects: List[str] = []

        self._open = False
        self._queue: 'asyncio.Queue[Optional[str]]' = asyncio.Queue()

        self.close_code = None
        self.close_reason = None

    @property
    def open(self) -> bool:
        return self._open

    async def connect(self, url: str, *, encoding: str, proxy: Optional[str] = None) -> None:
        self.connects.append(url)
        self._open = True

    async def send(self, frame: Union[str, bytes]) -> None:
        if not self._open:
            raise ConnectionError('Not open')
        self.sent.append(json.loads(frame))

    async def frames(self) -> AsyncIterator[Union[str, bytes]]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                self._queue.put_nowait(None)
                return
            yield frame

    def feed(self, op: int, d: Any = None, s: Optional[int] = None, t: Optional[str] = None) -> None:
        self._queue.put_nowait(json.dumps({'op': op, 'd': d, 's': s, 't': t}))

    def feed_raw(self, frame: str) -> None:
        self._queue.put_nowait(frame)

    def close_remotely(self, code: int) -> None:
        self._open = False
        self.close_code = code
        self._queue.put_nowait(None)

    async def disconnect(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.disconnects.append(code)
        if not self._open:
            return

        self._open = False
        self.close_code, self.close_reason = code, reason
        self._queue.put_nowait(None)

    def opcodes(self) -> List[int]:
        return [payload['op'] for payload in self.sent]


class FakeRest:
    def __init__(self, info: ConnectionInfo) -> None:
        self.info = info
        self.calls = 0

    async def get_connection_info(self, cancellation: Any, *, encoding: str = 'json') -> ConnectionInfo:
        self.calls += 1
        return self.info

    async def aclose(self) -> None:
        pass


@pytest.fixture()
def credentials() -> Credentials:
    return Credentials('Bot abc.def.ghi')


@pytest.fixture()
def connection_info() -> ConnectionInfo:
    return ConnectionInfo(
        url='wss://gateway.discord.gg',
        shards=1,
        session_start_limit=SessionStartLimit(remaining=999, reset_after_ms=0, total=1000),
    )


@pytest.fixture()
def rest(connection_info: ConnectionInfo) -> FakeRest:
    return FakeRest(connection_info)


@pytest.fixture()
def transports() -> List[FakeTransport]:
    return []


@pytest.fixture()
def config() -> Configuration:
    return Configuration(auth_token='abc.def.ghi')


@pytest.fixture()
def transport_factory(transports: List[FakeTransport]) -> Callable[[], FakeTransport]:
    def factory() -> FakeTransport:
        transports.append(FakeTransport())
        return transports[-1]
    return factory


@pytest.fixture()
def connector(
    credentials: Credentials,
    rest: FakeRest,
    config: Configuration,
    transport_factory: Callable[[], FakeTransport],
) -> Connector:
    return Connector(
        credentials, rest, config=config,
        transport_factory=transport_factory, invalid_session_delay=(0.05, 0.1),
    )


@pytest.fixture()
def eventually() -> Callable[[Callable[[], bool]], Awaitable[None]]:
    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError('Condition was not met in time')
            await asyncio.sleep(0.005)
    return wait

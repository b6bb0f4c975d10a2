import json
import threading
from typing import Any, List

import msgspec
import pytest

from discord_connector import (
    ALL, EventRegistry, EventType, GatewayEvent, HelloPayload, Opcode, ProtocolError
)


def frame(op: int, d: Any = None, s: Any = None, t: Any = None) -> str:
    return json.dumps({'op': op, 'd': d, 's': s, 't': t})


class MessagePayload(msgspec.Struct):
    id: str
    content: str = ''


class TestRegistration:
    def test_same_shape_appends(self) -> None:
        registry = EventRegistry()
        registry.register(Opcode.HELLO, HelloPayload, print)
        registry.register(Opcode.HELLO, HelloPayload, repr)

        entries = registry.callbacks(Opcode.HELLO)
        assert len(entries) == 1
        assert entries[0].callbacks == (print, repr)

    def test_other_shape_new_entry(self) -> None:
        registry = EventRegistry()
        registry.register(Opcode.HELLO, HelloPayload, print)
        registry.register(Opcode.HELLO, Any, print)

        assert [entry.shape for entry in registry.callbacks(Opcode.HELLO)] == [HelloPayload, Any]

    def test_keys_normalized(self) -> None:
        registry = EventRegistry()
        registry.register(10, Any, print)
        registry.register(EventType.READY, Any, repr)

        assert registry.callbacks(Opcode.HELLO)[0].callbacks == (print,)
        assert registry.callbacks('READY')[0].callbacks == (repr,)

    def test_unregister(self) -> None:
        registry = EventRegistry()
        registry.register(Opcode.HELLO, Any, print)
        registry.register(Opcode.HELLO, Any, print)

        registry.unregister(Opcode.HELLO, Any, print)
        assert registry.callbacks(Opcode.HELLO)[0].callbacks == (print,)

        registry.unregister(Opcode.HELLO, Any, print)
        assert registry.callbacks(Opcode.HELLO) == ()

    def test_unregister_unknown(self) -> None:
        registry = EventRegistry()
        registry.register(Opcode.HELLO, Any, print)

        registry.unregister(Opcode.HELLO, Any, repr)
        registry.unregister(Opcode.HELLO, HelloPayload, print)
        registry.unregister(Opcode.DISPATCH, Any, print)

        assert registry.callbacks(Opcode.HELLO)[0].callbacks == (print,)

    def test_listen(self) -> None:
        registry = EventRegistry()

        @registry.listen(EventType.MESSAGE_CREATE, MessagePayload)
        def on_message(event: GatewayEvent[MessagePayload]) -> None:
            ...

        assert registry.callbacks('MESSAGE_CREATE')[0].callbacks == (on_message,)

    def test_concurrent_registration(self) -> None:
        registry = EventRegistry()
        callbacks = [lambda event, i=i: i for i in range(50)]

        threads = [
            threading.Thread(target=registry.register, args=(Opcode.DISPATCH, Any, callback))
            for callback in callbacks
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert set(registry.callbacks(Opcode.DISPATCH)[0].callbacks) == set(callbacks)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_group_order(self) -> None:
        registry = EventRegistry()
        calls: List[str] = []

        registry.register('MESSAGE_CREATE', Any, lambda e: calls.append('event'))
        registry.register(Opcode.DISPATCH, Any, lambda e: calls.append('opcode'))
        registry.register(ALL, Any, lambda e: calls.append('all'))

        await registry.dispatch(frame(0, {'id': '1'}, 1, 'MESSAGE_CREATE'))

        assert calls == ['all', 'opcode', 'event']

    @pytest.mark.asyncio
    async def test_registration_order(self) -> None:
        registry = EventRegistry()
        calls: List[int] = []

        registry.register(Opcode.HEARTBEAT_ACK, Any, lambda e: calls.append(1))
        registry.register(Opcode.HEARTBEAT_ACK, Any, lambda e: calls.append(2))

        await registry.dispatch(frame(11))

        assert calls == [1, 2]

    @pytest.mark.asyncio
    async def test_typed_payload(self) -> None:
        registry = EventRegistry()
        events: List[GatewayEvent] = []
        registry.register('MESSAGE_CREATE', MessagePayload, events.append)

        message = await registry.dispatch(
            frame(0, {'id': '42', 'content': 'hi', 'extra': True}, 7, 'MESSAGE_CREATE')
        )

        assert message.sequence == 7
        assert message.is_dispatch
        assert events[0].data == MessagePayload(id='42', content='hi')
        assert events[0].sequence == 7
        assert events[0].event_type == 'MESSAGE_CREATE'

    @pytest.mark.asyncio
    async def test_decoded_once_per_shape(self) -> None:
        registry = EventRegistry()
        events: List[GatewayEvent] = []

        registry.register(ALL, MessagePayload, events.append)
        registry.register(Opcode.DISPATCH, MessagePayload, events.append)
        registry.register('MESSAGE_CREATE', MessagePayload, events.append)
        registry.register('MESSAGE_CREATE', Any, events.append)

        await registry.dispatch(frame(0, {'id': '1'}, 1, 'MESSAGE_CREATE'))

        assert len(events) == 4
        assert events[0] is events[1] is events[2]
        assert events[3] is not events[0]

    @pytest.mark.asyncio
    async def test_async_callbacks(self) -> None:
        registry = EventRegistry()
        calls: List[str] = []

        async def first(event: GatewayEvent) -> None:
            calls.append('async')

        registry.register(Opcode.HELLO, HelloPayload, first)
        registry.register(Opcode.HELLO, HelloPayload, lambda e: calls.append('sync'))

        await registry.dispatch(frame(10, {'heartbeat_interval': 41250}))

        assert calls == ['async', 'sync']

    @pytest.mark.asyncio
    async def test_failing_callback_isolated(self) -> None:
        registry = EventRegistry()
        calls: List[str] = []

        def broken(event: GatewayEvent) -> None:
            raise RuntimeError('broken')

        async def broken_async(event: GatewayEvent) -> None:
            raise RuntimeError('broken')

        registry.register(ALL, Any, broken)
        registry.register(Opcode.HELLO, Any, broken_async)
        registry.register(Opcode.HELLO, Any, lambda e: calls.append('hello'))

        await registry.dispatch(frame(10, {'heartbeat_interval': 1}))
        await registry.dispatch(frame(10, {'heartbeat_interval': 1}))

        assert calls == ['hello', 'hello']

    @pytest.mark.asyncio
    async def test_mismatched_shape_skipped(self) -> None:
        registry = EventRegistry()
        calls: List[Any] = []

        registry.register(Opcode.HELLO, HelloPayload, calls.append)
        registry.register(Opcode.HELLO, Any, lambda e: calls.append(e.data))

        await registry.dispatch(frame(10, {'something': 'else'}))

        assert calls == [{'something': 'else'}]

    @pytest.mark.asyncio
    async def test_unknown_opcode(self) -> None:
        registry = EventRegistry()
        events: List[GatewayEvent] = []
        registry.register(ALL, Any, events.append)

        message = await registry.dispatch(frame(42, [1, 2, 3]))

        assert message.opcode == 42
        assert events[0].data == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_registration_during_dispatch(self) -> None:
        registry = EventRegistry()
        calls: List[str] = []

        def late(event: GatewayEvent) -> None:
            calls.append('late')

        def register(event: GatewayEvent) -> None:
            calls.append('register')
            registry.register(Opcode.HEARTBEAT_ACK, Any, late)

        registry.register(ALL, Any, register)

        await registry.dispatch(frame(11))
        assert calls == ['register']

        await registry.dispatch(frame(11))
        assert calls == ['register', 'register', 'late']

    @pytest.mark.asyncio
    @pytest.mark.parametrize('raw', ['not json', '{"d": null}', '{"op": "hello"}', '[1, 2]'])
    async def test_undecodable(self, raw: str) -> None:
        registry = EventRegistry()

        with pytest.raises(ProtocolError):
            await registry.dispatch(raw)

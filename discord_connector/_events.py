import enum
import inspect
import logging
import threading
from types import MappingProxyType
from typing import (
    Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union
)

import msgspec

from ._codec import PayloadCodec
from ._errors import ProtocolError
from ._models import GatewayEvent, ProtocolMessage
from ._opcode import EventType, Opcode

__all__ = ('ALL', 'CallbackEntry', 'EventRegistry')


logger = logging.getLogger(__name__)


class _Wildcard(enum.Enum):
    ALL = 'ALL'


ALL = _Wildcard.ALL
"""Routing key for callbacks receiving every message."""

Callback = Callable[[GatewayEvent], Union[None, Awaitable[None]]]
RoutingKey = Union[_Wildcard, Opcode, int, EventType, str]

_Table = Mapping[Union[_Wildcard, int, str], Tuple['CallbackEntry', ...]]


class CallbackEntry:
    """Callbacks registered under one routing key for one payload shape.

    Entries are never mutated once published, registering or unregistering
    a callback replaces the entry.
    """

    __slots__ = ('shape', 'callbacks')

    def __init__(self, shape: Any, callbacks: Tuple[Callback, ...] = ()) -> None:
        self.shape = shape
        self.callbacks = callbacks

    def __repr__(self) -> str:
        return f'<CallbackEntry shape={self.shape!r} callbacks={len(self.callbacks)}>'

    def adding(self, callback: Callback) -> 'CallbackEntry':
        return CallbackEntry(self.shape, self.callbacks + (callback,))

    def removing(self, callback: Callback) -> 'CallbackEntry':
        callbacks = list(self.callbacks)
        for i, existing in enumerate(callbacks):
            if existing == callback:
                del callbacks[i]
                break
        return CallbackEntry(self.shape, tuple(callbacks))


def _normalize(key: RoutingKey) -> Union[_Wildcard, int, str]:
    if key is ALL:
        return key
    if isinstance(key, EventType):
        return key.value
    if isinstance(key, str):
        return key
    return int(key)


class EventRegistry:
    """Registry of callbacks invoked for inbound gateway payloads.

    Callbacks are registered under a routing key and a payload shape. The
    routing key is either `ALL`, an opcode or, for DISPATCH payloads, an event
    type. The payload shape is any type msgspec can convert to, callbacks
    receive a `GatewayEvent` whose `data` has been converted to it.

    For every payload callbacks run in three groups: `ALL` callbacks, then
    opcode callbacks, then event type callbacks. Within a group they run per
    shape in the order the shape was first registered, and in registration
    order for each shape.

    Registering and unregistering is safe from any thread, also while a
    dispatch is in progress. The callback tables are replaced as a whole
    under a lock that is never held while calling callbacks.
    """

    def __init__(self, codec: Optional[PayloadCodec] = None) -> None:
        self.codec = codec or PayloadCodec('json')

        self._lock = threading.Lock()
        self._opcodes: _Table = MappingProxyType({})
        self._events: _Table = MappingProxyType({})

    def _table(self, key: Union[_Wildcard, int, str]) -> str:
        return '_events' if isinstance(key, str) else '_opcodes'

    def callbacks(self, key: RoutingKey) -> Tuple[CallbackEntry, ...]:
        """Return the entries currently registered under `key`."""
        key = _normalize(key)
        return getattr(self, self._table(key)).get(key, ())

    def register(self, key: RoutingKey, shape: Any, callback: Callback) -> None:
        """Register `callback` under `key` for payloads of `shape`.

        Registering the same callback twice means it is called twice.
        """
        key = _normalize(key)
        attr = self._table(key)

        with self._lock:
            table = dict(getattr(self, attr))
            entries = list(table.get(key, ()))

            for i, entry in enumerate(entries):
                if entry.shape == shape:
                    entries[i] = entry.adding(callback)
                    break
            else:
                entries.append(CallbackEntry(shape, (callback,)))

            table[key] = tuple(entries)
            setattr(self, attr, MappingProxyType(table))

    def unregister(self, key: RoutingKey, shape: Any, callback: Callback) -> None:
        """Remove one registration of `callback`, doing nothing if there is none."""
        key = _normalize(key)
        attr = self._table(key)

        with self._lock:
            table = dict(getattr(self, attr))
            entries = []
            for entry in table.get(key, ()):
                if entry.shape == shape:
                    entry = entry.removing(callback)
                if entry.callbacks:
                    entries.append(entry)

            if entries:
                table[key] = tuple(entries)
            else:
                table.pop(key, None)
            setattr(self, attr, MappingProxyType(table))

    def listen(self, key: RoutingKey, shape: Any = Any) -> Callable[[Callback], Callback]:
        """Decorator version of `register()`."""
        def decorator(callback: Callback) -> Callback:
            self.register(key, shape, callback)
            return callback
        return decorator

    def route(self, frame: Union[str, bytes]) -> Tuple[Any, ProtocolMessage]:
        """Decode a frame and the part of it needed for routing.

        Raises:
            ProtocolError: The frame isn't a gateway payload.
        """
        try:
            obj = self.codec.loads(frame)
            return obj, msgspec.convert(obj, ProtocolMessage)
        except (ValueError, TypeError, msgspec.ValidationError) as exc:
            raise ProtocolError(f'Undecodable gateway payload: {exc}') from exc

    async def dispatch(self, frame: Union[str, bytes]) -> ProtocolMessage:
        """Invoke every callback matching the payload in `frame`.

        Failing callbacks are logged and don't stop other callbacks from
        running.

        Raises:
            ProtocolError: The frame isn't a gateway payload.

        Returns:
            The routing part of the payload.
        """
        obj, message = self.route(frame)

        # Snapshot the tables, registrations from now on apply to the next
        # payload
        opcodes, events = self._opcodes, self._events

        groups = [opcodes.get(ALL, ()), opcodes.get(message.opcode, ())]
        if message.event_type is not None:
            groups.append(events.get(message.event_type, ()))

        decoded: Dict[Any, Optional[GatewayEvent]] = {}

        for entries in groups:
            for entry in entries:
                if entry.shape not in decoded:
                    decoded[entry.shape] = self._decode(obj, message, entry.shape)

                event = decoded[entry.shape]
                if event is None:
                    continue

                for callback in entry.callbacks:
                    await self._invoke(callback, event)

        return message

    def _decode(self, obj: Any, message: ProtocolMessage, shape: Any) -> Optional[GatewayEvent]:
        try:
            return msgspec.convert(obj, GatewayEvent[shape])
        except msgspec.ValidationError:
            logger.exception('Payload of opcode %s (%s) does not match %r',
                             message.opcode, message.event_type, shape)
            return None

    async def _invoke(self, callback: Callback, event: GatewayEvent) -> None:
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception('Error in callback %r for opcode %s (%s)',
                             callback, event.opcode, event.event_type)

import asyncio
import logging
import weakref
from typing import Any, Awaitable, Callable, List, TypeVar

from ._errors import ConnectionCancelled

__all__ = ('Cancellation',)


logger = logging.getLogger(__name__)

T = TypeVar('T')


class Cancellation:
    """Cooperative cancellation signal for asyncio code.

    Signals can be linked: a signal created with `Cancellation.link()` is
    cancelled as soon as any of its parents is, while cancelling the linked
    signal leaves the parents untouched. This is how a caller-supplied signal
    and a connection's own signal are combined.

    `cancel()` must be called from the thread running the event loop.
    """

    __slots__ = ('_event', '_children', '_callbacks', '__weakref__')

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._children: 'weakref.WeakSet[Cancellation]' = weakref.WeakSet()
        self._callbacks: List[Callable[[], Any]] = []

    def __repr__(self) -> str:
        return f'<Cancellation cancelled={self.cancelled}>'

    @classmethod
    def link(cls, *parents: 'Cancellation') -> 'Cancellation':
        """Create a signal cancelled whenever any of `parents` is cancelled."""
        child = cls()
        for parent in parents:
            if parent.cancelled:
                child.cancel()
            else:
                parent._children.add(child)
        return child

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Cancel this signal and every signal linked to it.

        Calling this more than once has no effect.
        """
        if self._event.is_set():
            return

        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception('Error in cancellation callback %r', callback)

        for child in list(self._children):
            child.cancel()

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Call `callback` once this signal is cancelled.

        If the signal is already cancelled the callback is called right away.
        """
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ConnectionCancelled()

    async def wait(self) -> None:
        """Wait until this signal is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep for `delay` seconds unless cancelled first.

        Returns:
            True if the full delay elapsed, False if the signal was cancelled.
        """
        if self.cancelled:
            return False

        try:
            await asyncio.wait_for(self._event.wait(), delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, aborting it if this signal is cancelled first.

        Raises:
            ConnectionCancelled: The signal was cancelled before `awaitable`
                finished, the awaitable has been cancelled.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if task.cancelled():
            raise ConnectionCancelled()

        # The task wins if both finished at once
        return task.result()

import logging
from typing import Any, Awaitable, Callable, Dict

from ._cancel import Cancellation
from ._models import Session
from ._opcode import Opcode

__all__ = ('Heartbeat',)


logger = logging.getLogger(__name__)


class Heartbeat:
    """Periodic HEARTBEAT sender watching for HEARTBEAT_ACKs.

    The acknowledgment state lives in `Session.ack_pending`: it is set when a
    HEARTBEAT is sent and cleared by `acknowledge()`. If it is still set when
    the next HEARTBEAT is due the connection is considered dead.
    """

    __slots__ = ('session', 'sent')

    def __init__(self, session: Session) -> None:
        self.session = session
        self.sent = 0

    def payload(self) -> Dict[str, Any]:
        """The HEARTBEAT command, carrying the last sequence received."""
        return {'op': int(Opcode.HEARTBEAT), 'd': self.session.last_sequence}

    def acknowledge(self) -> None:
        self.session.ack_pending = False

    async def run(
        self,
        interval: float,
        cancellation: Cancellation,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
        close: Callable[[], Awaitable[None]],
    ) -> None:
        """Send HEARTBEATs every `interval` seconds until cancelled.

        This never reconnects by itself. When a HEARTBEAT wasn't acknowledged
        in time `close` is awaited and the loop stops, the owner notices
        through its connection ending.

        Parameters:
            interval: Seconds to wait between HEARTBEATs.
            cancellation: Signal stopping the loop.
            send: Coroutine function sending a command.
            close: Coroutine function closing the connection with a status
                that allows resuming.
        """
        # Nothing has been sent yet, so nothing can be pending
        self.session.ack_pending = False

        while not cancellation.cancelled:
            if self.session.ack_pending:
                logger.warning('HEARTBEAT was not acknowledged within %.3fs', interval)
                await close()
                return

            self.session.ack_pending = True
            try:
                await send(self.payload())
            except ConnectionError:
                logger.debug('Connection is no longer open, stopping heartbeats')
                return

            self.sent += 1
            logger.debug('Sent HEARTBEAT with sequence %s', self.session.last_sequence)

            if not await cancellation.sleep(interval):
                return

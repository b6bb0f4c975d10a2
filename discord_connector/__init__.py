"""asyncio client keeping a connection to the Discord gateway alive.

The WebSocket protocol is implemented sans-I/O on top of `wsproto`, which an
asyncio transport drives. On top of that the connector authenticates,
identifies or resumes, heartbeats and dispatches every inbound payload to
callbacks registered for it.
"""

import logging

from ._cancel import *
from ._cdn import *
from ._codec import *
from ._config import *
from ._conn import *
from ._connector import *
from ._credentials import *
from ._errors import *
from ._events import *
from ._gateway import *
from ._heartbeat import *
from ._http import *
from ._models import *
from ._opcode import *
from ._transport import *

logging.getLogger(__name__).addHandler(logging.NullHandler())

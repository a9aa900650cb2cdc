"""Core components: shared types, events and errors.

Session control and the breakpoint registry live in ``haltline.core.session``
and ``haltline.core.breakpoints``. They depend on ``haltline.symbols`` and
``haltline.tools``, which in turn import the types here, so they are not
re-exported from this package.
"""

from haltline.core.types import DebugConfig, DebugSession, BoardInfo
from haltline.core.events import SessionEvent, SessionEvents
from haltline.core.errors import DebugError

__all__ = [
    "DebugConfig",
    "DebugSession",
    "BoardInfo",
    "SessionEvent",
    "SessionEvents",
    "DebugError",
]

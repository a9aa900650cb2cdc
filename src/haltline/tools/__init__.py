"""Tools for driving the debug probe and finding attached boards."""

from haltline.tools.probe import (
    ProbeCommandExecutor,
    ProbeConfig,
)
from haltline.tools.boards import (
    list_serial_boards,
    pick_default_board,
)
from haltline.tools.process import (
    force_kill,
    terminate_with_escalation,
)

__all__ = [
    # Probe
    "ProbeCommandExecutor",
    "ProbeConfig",
    # Boards
    "list_serial_boards",
    "pick_default_board",
    # Processes
    "force_kill",
    "terminate_with_escalation",
]

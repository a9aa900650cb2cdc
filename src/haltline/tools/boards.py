"""Board enumeration.

The session controller only needs "which boards are attached right now";
it takes any async callable returning ``BoardInfo`` records. The default
enumerator lists serial ports through pyserial.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from serial.tools import list_ports

from haltline.core.types import BoardInfo

logger = logging.getLogger(__name__)

BoardEnumerator = Callable[[], Awaitable[List[BoardInfo]]]

# USB vendor ID of the probe boards the tool ships for
TI_VENDOR_ID = "0451"


def _hex_id(value: Optional[int]) -> Optional[str]:
    return f"{value:04x}" if value is not None else None


async def list_serial_boards() -> List[BoardInfo]:
    """List serial ports that could carry a debug transport."""
    boards = []
    for port in list_ports.comports():
        if port.vid is None and not port.device.startswith(("/dev/ttyACM", "/dev/ttyUSB")):
            continue
        boards.append(BoardInfo(
            port=port.device,
            friendly_name=f"{port.description or port.device} ({port.device})",
            manufacturer=port.manufacturer,
            serial_number=port.serial_number,
            vendor_id=_hex_id(port.vid),
            product_id=_hex_id(port.pid),
        ))
    logger.debug(f"Found {len(boards)} serial boards")
    return boards


def pick_default_board(
    boards: List[BoardInfo], preferred_port: Optional[str] = None
) -> Optional[BoardInfo]:
    """Choose the board to debug.

    Order: the preferred port if attached, then the first TI board, then
    the first board of any kind.
    """
    if preferred_port:
        for board in boards:
            if board.port == preferred_port:
                return board
        logger.warning(f"Preferred port {preferred_port} not found")

    for board in boards:
        if (board.vendor_id or "").lower() == TI_VENDOR_ID:
            return board

    return boards[0] if boards else None

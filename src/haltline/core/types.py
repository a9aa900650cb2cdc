"""Shared data types for the haltline debugger."""

import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union


def normalize_address(address: Union[str, int]) -> str:
    """Normalize an address to ``0x`` + lower-case hex without leading zeros.

    Accepts ints and hex text with or without a ``0x`` prefix, so
    ``"0x00000132"``, ``"0X132"`` and ``"132"`` all become ``"0x132"``.

    Raises:
        ValueError: If the text is not a hex number
    """
    if isinstance(address, int):
        if address < 0:
            raise ValueError(f"Negative address: {address}")
        return f"0x{address:x}"

    text = address.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not re.fullmatch(r"[0-9a-f]+", text):
        raise ValueError(f"Invalid address: {address!r}")
    return "0x" + (text.lstrip("0") or "0")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DebugConfig:
    """Configuration for a debug session.

    Attributes:
        probe_path: Path to the debug-probe executable
        port: Preferred transport (serial port); auto-detected if None
        verbose: Pass --verbose to every probe invocation
        command_timeout: Timeout for request/response probe commands (s)
        allow_offline: Start an offline session when no board is attached
        auto_halt: Halt the target and read registers right after start
        liveness_interval: Seconds between board re-enumeration ticks
        disconnect_threshold: Consecutive error chunks that end the session
        terminate_grace: Grace period before SIGKILL on teardown (s)
        breakpoint_capacity: Hardware breakpoint slots on the target
        disassembly_path: Disassembly listing for address/variable lookup
        elf_path: Linked image for symbol lookup
    """
    probe_path: str = "swd-debugger"
    port: Optional[str] = None
    verbose: bool = False
    command_timeout: float = 10.0
    allow_offline: bool = False
    auto_halt: bool = False
    liveness_interval: float = 5.0
    disconnect_threshold: int = 5
    terminate_grace: float = 0.5
    breakpoint_capacity: int = 4
    disassembly_path: Optional[str] = None
    elf_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "DebugConfig":
        """Build a configuration from ``HALTLINE_*`` environment variables."""
        config = cls()
        config.probe_path = os.environ.get("HALTLINE_PROBE_PATH", config.probe_path)
        config.port = os.environ.get("HALTLINE_PORT") or None
        config.verbose = _env_bool("HALTLINE_VERBOSE", config.verbose)
        config.allow_offline = _env_bool("HALTLINE_ALLOW_OFFLINE", config.allow_offline)
        config.command_timeout = float(
            os.environ.get("HALTLINE_TIMEOUT", config.command_timeout)
        )
        config.liveness_interval = float(
            os.environ.get("HALTLINE_LIVENESS_INTERVAL", config.liveness_interval)
        )
        config.disconnect_threshold = int(
            os.environ.get("HALTLINE_DISCONNECT_THRESHOLD", config.disconnect_threshold)
        )
        return config


@dataclass
class BoardInfo:
    """A board reachable over a serial transport."""
    port: str
    friendly_name: str = ""
    manufacturer: Optional[str] = None
    serial_number: Optional[str] = None
    vendor_id: Optional[str] = None
    product_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.friendly_name:
            self.friendly_name = self.port


OFFLINE_BOARD = BoardInfo(port="offline", friendly_name="Offline (no hardware)")


@dataclass
class DebugSession:
    """One debug session; owned by the session controller."""
    id: str
    board: BoardInfo
    is_active: bool = True
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def offline(self) -> bool:
        return self.board is OFFLINE_BOARD or self.board.port == OFFLINE_BOARD.port


@dataclass
class RegisterInfo:
    """A register value as reported by the probe."""
    name: str
    value: str
    description: Optional[str] = None


@dataclass
class MemoryReadResult:
    """Result of a single memory read."""
    address: str
    data: str
    size: int


@dataclass(frozen=True)
class VariableInfo:
    """A variable-like symbol presented to the UI."""
    name: str
    address: str
    scope: str = "local"  # local | global | static | argument
    line: Optional[int] = None
    file_path: Optional[str] = None
    type: Optional[str] = None
    value: Optional[str] = None
    size: Optional[int] = None


@dataclass
class VariableSnapshot:
    """Variables captured at one halt, with the source they came from."""
    variables: List[VariableInfo] = field(default_factory=list)
    source: str = "none"  # disassembly | elf | registers | none

    @property
    def local_variables(self) -> List[VariableInfo]:
        return [v for v in self.variables if v.scope in ("local", "argument")]

    @property
    def global_variables(self) -> List[VariableInfo]:
        return [v for v in self.variables if v.scope in ("global", "static")]

    @property
    def total_count(self) -> int:
        return len(self.variables)


@dataclass(frozen=True)
class SourceLineAddress:
    """A source line and the address of its first instruction."""
    file: str
    line: int
    address: str
    function: Optional[str] = None


@dataclass(frozen=True)
class ElfSymbol:
    """A symbol read from an ELF symbol table."""
    name: str
    address: str
    size: int
    scope: str  # local | global
    kind: str  # function | variable


@dataclass(frozen=True)
class BreakpointDeclaration:
    """A breakpoint as declared in the IDE: file:line or function name."""
    file: Optional[str] = None
    line: Optional[int] = None
    function: Optional[str] = None

    def __post_init__(self) -> None:
        if self.function is None and (self.file is None or self.line is None):
            raise ValueError("Breakpoint needs either file and line, or a function")

    @property
    def location(self) -> str:
        if self.function is not None:
            return self.function
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class DeviceBreakpoint:
    """One ENABLED hardware breakpoint slot."""
    slot: int
    address: str


class BreakpointState(Enum):
    """Life cycle of a declared breakpoint."""
    DECLARED = "declared"
    RESOLVED = "resolved"
    ARMED = "armed"


@dataclass
class BreakpointEntry:
    """A declaration together with its resolved address and device state."""
    declaration: BreakpointDeclaration
    address: Optional[str] = None
    state: BreakpointState = BreakpointState.DECLARED
    slot: Optional[int] = None

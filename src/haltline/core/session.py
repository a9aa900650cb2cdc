"""Debug session controller.

Owns the session life cycle, the single long-lived monitor process started
by ``resume`` and the two disconnect detectors. All work runs on the
asyncio event loop; the only outstanding operations are at most one
short probe command and at most one monitor process, and callers keep
them apart (``halt`` always stops the monitor before talking to the
probe).
"""

import asyncio
import logging
import re
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence

from haltline.arch.cortex_m import PC_NAMES, describe_register, placeholder_registers
from haltline.core.breakpoints import BreakpointRegistry
from haltline.core.errors import (
    DebugError,
    NoActiveSession,
    NoTargetBoard,
    OfflineSession,
    SessionAlreadyActive,
    TargetRunning,
)
from haltline.core.events import EventCallback, SessionEvent, SessionEvents
from haltline.core.types import (
    OFFLINE_BOARD,
    BoardInfo,
    DebugConfig,
    DebugSession,
    MemoryReadResult,
    RegisterInfo,
    SourceLineAddress,
    VariableInfo,
    VariableSnapshot,
)
from haltline.symbols.address_mapper import AddressMapper
from haltline.symbols.disasm_symbols import parse_disassembly_file, symbols_to_variables
from haltline.symbols.elf_reader import read_elf_file
from haltline.tools.boards import BoardEnumerator, list_serial_boards, pick_default_board
from haltline.tools.probe import ProbeCommandExecutor, ProbeConfig
from haltline.tools.process import force_kill, terminate_with_escalation

logger = logging.getLogger(__name__)

HALT_INDICATORS = ("Target halted", "HALTED", "stopping monitor", "Breakpoint hit")

DISCONNECT_INDICATORS = (
    "Permission denied",
    "Access is denied",
    "handle is invalid",
    "No such file or directory",
    "not found",
    "Connection refused",
    "device disconnected",
    "Broken pipe",
    "Input/output error",
)

REGISTER_LINE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9_]*)\s*:\s*(0x[0-9a-fA-F]+|\d+)\b")
REGISTER_VALUE_RE = re.compile(r"(?:value|:)\s*(0x[0-9a-fA-F]+|\d+)", re.IGNORECASE)

RESTART_DELAY = 1.0
_READ_CHUNK = 4096


class SessionState(Enum):
    """Controller states."""
    INACTIVE = "inactive"
    STARTING = "starting"
    HALTED = "halted"
    RUNNING = "running"
    OFFLINE = "offline"


class HaltDetector:
    """Spots halt indicators in streamed monitor stdout.

    Matches across chunk boundaries and fires at most once per resume.
    """

    def __init__(self, indicators: Sequence[str] = HALT_INDICATORS) -> None:
        self.indicators = tuple(indicators)
        self._keep = max(len(i) for i in self.indicators) - 1
        self._tail = ""
        self.triggered = False

    def reset(self) -> None:
        self._tail = ""
        self.triggered = False

    def feed(self, chunk: str) -> bool:
        """Return True the first time a halt indicator is seen."""
        if self.triggered:
            return False
        text = self._tail + chunk
        if any(indicator in text for indicator in self.indicators):
            self.triggered = True
            self._tail = ""
            return True
        self._tail = text[-self._keep:] if self._keep else ""
        return False


class DisconnectClassifier:
    """Counts consecutive stderr chunks that look like a lost transport.

    Any chunk without a disconnect indicator resets the count. Fires once
    when the count reaches ``threshold``.
    """

    def __init__(
        self,
        threshold: int = 5,
        indicators: Sequence[str] = DISCONNECT_INDICATORS,
    ) -> None:
        self.threshold = threshold
        self.indicators = tuple(indicators)
        self.consecutive = 0
        self.tripped = False

    def reset(self) -> None:
        self.consecutive = 0
        self.tripped = False

    def matches(self, chunk: str) -> bool:
        return any(indicator in chunk for indicator in self.indicators)

    def feed(self, chunk: str) -> bool:
        """Return True the first time the threshold is reached."""
        if self.tripped:
            return False
        if not self.matches(chunk):
            self.consecutive = 0
            return False
        self.consecutive += 1
        if self.consecutive >= self.threshold:
            self.tripped = True
            return True
        return False


def parse_registers(output: str) -> List[RegisterInfo]:
    """Parse ``NAME: value`` lines from ``read-all`` output."""
    registers = []
    for line in output.splitlines():
        match = REGISTER_LINE_RE.match(line)
        if match:
            name = match.group(1).upper()
            registers.append(RegisterInfo(
                name=name,
                value=match.group(2),
                description=describe_register(name),
            ))
    return registers


def parse_register_value(output: str) -> str:
    """Pull a single value out of ``read-reg`` output; raw text if no match."""
    match = REGISTER_VALUE_RE.search(output)
    if match:
        return match.group(1)
    return output.strip()


class DebugSessionController:
    """Drives the debug probe for one session at a time.

    Example:
        controller = DebugSessionController(DebugConfig(port="/dev/ttyACM0"))
        controller.subscribe(lambda event: print(event.value))

        async with controller:
            await controller.halt()
            regs = await controller.read_all_registers()
            await controller.resume()
    """

    def __init__(
        self,
        config: Optional[DebugConfig] = None,
        executor: Optional[ProbeCommandExecutor] = None,
        board_enumerator: Optional[BoardEnumerator] = None,
        address_mapper: Optional[AddressMapper] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Session configuration (uses defaults if not provided)
            executor: Probe command executor (built from config if not provided)
            board_enumerator: Async callable listing attached boards
            address_mapper: Shared address mapper for breakpoints and locations
        """
        self.config = config or DebugConfig()
        self.executor = executor or ProbeCommandExecutor(ProbeConfig(
            probe_path=self.config.probe_path,
            verbose=self.config.verbose,
            timeout=self.config.command_timeout,
        ))
        self.board_enumerator: BoardEnumerator = board_enumerator or list_serial_boards
        self.mapper = address_mapper or AddressMapper()
        self.events = SessionEvents()
        self.breakpoints = BreakpointRegistry(
            self.execute, self.mapper, capacity=self.config.breakpoint_capacity
        )
        self.registers: List[RegisterInfo] = []

        self._session: Optional[DebugSession] = None
        self._state = SessionState.INACTIVE
        self._monitor_process: Optional[asyncio.subprocess.Process] = None
        self._monitor_tasks: List["asyncio.Task[None]"] = []
        self._liveness_task: Optional["asyncio.Task[None]"] = None
        self._halt_detector = HaltDetector()
        self._disconnect = DisconnectClassifier(self.config.disconnect_threshold)

    # === State ===

    @property
    def session(self) -> Optional[DebugSession]:
        """Current (or most recently ended) session."""
        return self._session

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.is_active

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def monitoring(self) -> bool:
        """Check if a monitor process is live."""
        return self._monitor_process is not None

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to session events; returns an unsubscribe function."""
        return self.events.subscribe(callback)

    # === Lifecycle ===

    async def start(self, port: Optional[str] = None) -> DebugSession:
        """Start a debug session.

        Args:
            port: Preferred transport; falls back to config, then auto-detect

        Returns:
            The new session

        Raises:
            SessionAlreadyActive: If a session is already active
            NoTargetBoard: If no board is attached and offline is not allowed
            ToolUnavailable: If the probe executable is missing
        """
        if self.active:
            raise SessionAlreadyActive()

        logger.info("Starting debug session...")
        self._state = SessionState.STARTING
        try:
            board = await self._select_board(port or self.config.port)
            offline = board is OFFLINE_BOARD
            if not offline:
                self.executor.check_available()
                self.executor.config.port = board.port

            session = DebugSession(id=f"debug-{int(time.time() * 1000)}", board=board)
            self._session = session
            self._halt_detector.reset()
            self._disconnect.reset()
            self._load_symbols()

            if offline:
                self._state = SessionState.OFFLINE
                self.registers = placeholder_registers()
                logger.warning("No board attached; session running offline")
            else:
                self._state = SessionState.HALTED
                self._start_liveness()
                if self.config.auto_halt:
                    await self.halt()

            logger.info(f"Debug session started: {session.id} on {board.friendly_name}")
            return session
        except BaseException:
            await self._teardown(force=True)
            raise

    async def stop(self) -> None:
        """Stop the session, its monitor and any in-flight command.

        Safe to call when no session is active.
        """
        if not self.active:
            logger.info("No active debug session to stop")
            return
        assert self._session is not None
        logger.info(f"Stopping debug session {self._session.id}")
        await self._teardown(force=False)

    async def restart(self, port: Optional[str] = None) -> DebugSession:
        """Stop the current session and start a fresh one."""
        await self.stop()
        await asyncio.sleep(RESTART_DELAY)
        return await self.start(port)

    async def _select_board(self, port: Optional[str]) -> BoardInfo:
        try:
            boards = await self.board_enumerator()
        except Exception as e:
            logger.warning(f"Board detection failed: {e}")
            boards = []

        board = pick_default_board(boards, port)
        if board is not None:
            return board
        if self.config.allow_offline:
            return OFFLINE_BOARD
        raise NoTargetBoard("No boards detected. Please connect a board and try again.")

    def _load_symbols(self) -> None:
        path = self.config.disassembly_path
        if path and self.mapper.disassembly_path != path:
            self.mapper.load_file(path)

    async def _teardown(self, force: bool) -> None:
        await self._stop_liveness()
        await self._stop_monitor(force=force)
        await self.executor.kill()
        if self._session is not None:
            self._session.is_active = False
        self._state = SessionState.INACTIVE
        self.registers = []

    # === Execution control ===

    async def halt(self) -> List[RegisterInfo]:
        """Halt the target, then re-read registers and emit HALTED.

        Raises:
            NoActiveSession: If no session is active
            OfflineSession: If the session has no hardware
            CommandFailed: If the probe rejects the halt
        """
        self._require_hardware()
        await self._stop_monitor()

        logger.info("Halting target...")
        await self.executor.run(["halt"])
        self._state = SessionState.HALTED

        registers = await self._refresh_registers()
        self.events.emit(SessionEvent.HALTED)
        return registers

    async def resume(self) -> None:
        """Resume the target and watch the monitor output for a halt."""
        self._require_hardware()
        if self.monitoring:
            logger.info("Target already running")
            return

        logger.info("Resuming target...")
        process = await self.executor.spawn(["resume"])
        self._monitor_process = process
        self._halt_detector.reset()
        self._disconnect.reset()
        self._state = SessionState.RUNNING
        self.registers = []

        self._monitor_tasks = [
            asyncio.create_task(self._pump(process.stdout, self._handle_monitor_stdout)),
            asyncio.create_task(self._pump(process.stderr, self._handle_monitor_stderr)),
            asyncio.create_task(self._watch_monitor(process)),
        ]
        logger.info("Target resumed - monitoring for breakpoints...")

    async def step(self) -> List[RegisterInfo]:
        """Execute one instruction, then re-read registers."""
        self._require_hardware()
        self._ensure_halted()

        logger.info("Stepping one instruction...")
        await self.executor.run(["step"])
        self._state = SessionState.HALTED

        registers = await self._refresh_registers()
        self.events.emit(SessionEvent.STEP_COMPLETED)
        return registers

    # === Registers and memory ===

    async def execute(self, args: List[str]) -> str:
        """Run a raw probe command against the session's transport.

        Raises:
            TargetRunning: If the monitor is live
        """
        self._require_hardware()
        self._ensure_halted()
        return await self.executor.run(args)

    async def read_register(self, name: str) -> str:
        """Read one register; returns its value text."""
        session = self._require_session()
        if session.offline:
            return "0x00000000"
        self._ensure_halted()
        logger.debug(f"Reading register: {name}")
        output = await self.executor.run(["read-reg", name])
        return parse_register_value(output)

    async def read_all_registers(self) -> List[RegisterInfo]:
        """Read every core register."""
        session = self._require_session()
        if session.offline:
            self.registers = placeholder_registers()
            return list(self.registers)
        self._ensure_halted()
        logger.debug("Reading all registers...")
        output = await self.executor.run(["read-all"])
        self.registers = parse_registers(output)
        return list(self.registers)

    async def read_memory(self, address: str, size: int = 4) -> MemoryReadResult:
        """Read memory at an address."""
        session = self._require_session()
        if session.offline:
            return MemoryReadResult(address=address, data="0x00000000", size=size)
        self._ensure_halted()
        logger.debug(f"Reading memory at {address}, size: {size}")
        output = await self.executor.run(["read", address])
        return MemoryReadResult(address=address, data=output.strip(), size=size)

    async def write_memory(self, address: str, value: str) -> None:
        """Write a value to memory."""
        session = self._require_session()
        if session.offline:
            logger.info(f"Offline session: ignoring write of {value} to {address}")
            return
        self._ensure_halted()
        logger.debug(f"Writing memory at {address}: {value}")
        await self.executor.run(["write", address, value])

    async def _refresh_registers(self) -> List[RegisterInfo]:
        try:
            return await self.read_all_registers()
        except DebugError as e:
            logger.warning(f"Register read after halt failed: {e}")
            self.registers = []
            return []

    # === Source context ===

    async def current_location(self) -> Optional[SourceLineAddress]:
        """Source line of the program counter, if the listing knows it."""
        pc = next((r.value for r in self.registers if r.name.upper() in PC_NAMES), None)
        if pc is None:
            pc = await self.read_register("PC")
        try:
            return self.mapper.reverse_resolve(pc if pc.lower().startswith("0x") else int(pc))
        except ValueError:
            return None

    async def get_variables(self) -> VariableSnapshot:
        """Variables for the UI at the current halt.

        Tries the disassembly listing, then the linked image, and falls
        back to the register set so an active session never shows nothing.
        """
        if not self.active:
            return VariableSnapshot()

        disasm = self.config.disassembly_path or self.mapper.disassembly_path
        if disasm:
            variables = parse_disassembly_file(disasm)
            if variables:
                return VariableSnapshot(variables=variables, source="disassembly")

        if self.config.elf_path:
            variables = symbols_to_variables(read_elf_file(self.config.elf_path))
            if variables:
                return VariableSnapshot(variables=variables, source="elf")

        registers = self.registers
        if not registers and not self.monitoring:
            registers = await self._refresh_registers()
        return VariableSnapshot(
            variables=[
                VariableInfo(name=r.name, address="", scope="local",
                             type="register", value=r.value)
                for r in registers
            ],
            source="registers",
        )

    # === Monitor ===

    async def _pump(self, stream: Optional[asyncio.StreamReader], handler) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            await handler(chunk.decode(errors="replace"))

    async def _handle_monitor_stdout(self, text: str) -> None:
        logger.debug(f"monitor: {text.rstrip()}")
        if self._halt_detector.feed(text) and self._state is SessionState.RUNNING:
            await self._on_target_halted()

    async def _handle_monitor_stderr(self, text: str) -> None:
        logger.debug(f"monitor stderr: {text.rstrip()}")
        if self._disconnect.feed(text):
            await self._terminate_session(
                f"{self._disconnect.consecutive} consecutive transport errors"
            )

    async def _on_target_halted(self) -> None:
        logger.info("Target halted - breakpoint hit")
        self._state = SessionState.HALTED
        await self._stop_monitor()
        await self._refresh_registers()
        if self.active:
            self.events.emit(SessionEvent.BREAKPOINT_HIT)

    async def _watch_monitor(self, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()
        # Let the pumps drain so a final halt line is seen before deciding.
        # asyncio.wait leaves them running if this task is cancelled.
        current = asyncio.current_task()
        pumps = [t for t in self._monitor_tasks if t is not current]
        if pumps:
            await asyncio.wait(pumps)

        if self._monitor_process is not process:
            return
        self._monitor_process = None
        if code != 0:
            logger.warning(f"Monitor process exited with code {code}")
        else:
            logger.info("Monitor process exited")

        if self.active and self._state is SessionState.RUNNING:
            logger.warning("Monitor ended without a halt; target state unknown, treating as halted")
            self._state = SessionState.HALTED
            self.events.emit(SessionEvent.HALTED)

    async def _stop_monitor(self, force: bool = False) -> None:
        process = self._monitor_process
        self._monitor_process = None

        current = asyncio.current_task()
        pending = [t for t in self._monitor_tasks if t is not current and not t.done()]
        self._monitor_tasks = []
        for task in pending:
            task.cancel()

        if process is not None:
            logger.info("Stopping monitor process")
            if force:
                await force_kill(process)
            else:
                await terminate_with_escalation(process, self.config.terminate_grace)

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # === Disconnect detection ===

    def _start_liveness(self) -> None:
        if self.config.liveness_interval <= 0:
            return
        self._liveness_task = asyncio.create_task(self._liveness_loop())

    async def _stop_liveness(self) -> None:
        task = self._liveness_task
        self._liveness_task = None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _liveness_loop(self) -> None:
        while self.active:
            await asyncio.sleep(self.config.liveness_interval)
            if not await self.check_liveness():
                return

    async def check_liveness(self) -> bool:
        """Re-enumerate boards; end the session if its board is gone.

        Returns:
            True if the session is still alive
        """
        session = self._session
        if session is None or not session.is_active:
            return False
        if session.offline:
            return True

        try:
            boards = await self.board_enumerator()
        except Exception as e:
            logger.warning(f"Board detection failed during liveness check: {e}")
            return True

        if any(board.port == session.board.port for board in boards):
            return True

        await self._terminate_session(f"board {session.board.port} is no longer attached")
        return False

    async def _terminate_session(self, reason: str) -> None:
        session = self._session
        if session is None or not session.is_active:
            return
        logger.error(f"Device disconnected: {reason}")
        session.is_active = False
        await self._teardown(force=True)
        self.events.emit(SessionEvent.DEVICE_DISCONNECTED)

    # === Internal ===

    def _require_session(self) -> DebugSession:
        if self._session is None or not self._session.is_active:
            raise NoActiveSession()
        return self._session

    def _require_hardware(self) -> DebugSession:
        session = self._require_session()
        if session.offline:
            raise OfflineSession("No hardware attached; connect a board for this command")
        return session

    def _ensure_halted(self) -> None:
        if self.monitoring:
            raise TargetRunning("Target is running; halt it first")

    # === Context Manager ===

    async def __aenter__(self) -> "DebugSessionController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

"""Hardware breakpoint registry.

Keeps three views consistent: the breakpoints declared in the IDE, their
addresses from the disassembly listing, and the slots the device reports
as ENABLED. Device state is only trusted straight after a ``bp --list``
query, so every add or remove re-queries before returning.
"""

import logging
import re
from typing import Awaitable, Callable, List, Optional

from haltline.core.errors import (
    BreakpointCapacityExceeded,
    BreakpointNotConfirmed,
    CommandFailed,
    UnresolvedAddress,
)
from haltline.core.types import (
    BreakpointDeclaration,
    BreakpointEntry,
    BreakpointState,
    DeviceBreakpoint,
    normalize_address,
)
from haltline.symbols.address_mapper import AddressMapper

logger = logging.getLogger(__name__)

ProbeCommand = Callable[[List[str]], Awaitable[str]]

DEFAULT_CAPACITY = 4

SLOT_RE = re.compile(r"Slot\s+(\d+):\s+ENABLED\s+at\s+(0x[0-9a-fA-F]+)", re.IGNORECASE)


def parse_breakpoint_list(output: str) -> List[DeviceBreakpoint]:
    """Parse ``bp --list`` output into enabled slots."""
    slots = []
    for line in output.splitlines():
        match = SLOT_RE.search(line)
        if match:
            slots.append(DeviceBreakpoint(
                slot=int(match.group(1)),
                address=normalize_address(match.group(2)),
            ))
    return slots


class BreakpointRegistry:
    """Declared breakpoints reconciled against hardware slots.

    Example:
        registry = BreakpointRegistry(controller.execute, mapper)
        decl = BreakpointDeclaration(file="main.c", line=10)
        registry.declare(decl)
        await registry.arm(decl)
        for entry in registry.entries():
            print(entry.declaration.location, entry.state)
    """

    def __init__(
        self,
        command: ProbeCommand,
        mapper: Optional[AddressMapper] = None,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        """Initialize the registry.

        Args:
            command: Runs one probe subcommand and returns its stdout
            mapper: Address mapper used to resolve declarations
            capacity: Number of hardware breakpoint slots
        """
        self._command = command
        self.mapper = mapper or AddressMapper()
        self.capacity = capacity
        self._declarations: List[BreakpointDeclaration] = []
        self._device: List[DeviceBreakpoint] = []

    # === IDE declarations ===

    @property
    def declarations(self) -> List[BreakpointDeclaration]:
        return list(self._declarations)

    def declare(self, decl: BreakpointDeclaration) -> BreakpointEntry:
        """Add an IDE breakpoint.

        Raises:
            BreakpointCapacityExceeded: If ``capacity`` are already declared
        """
        if decl in self._declarations:
            return self.entry_for(decl)
        if len(self._declarations) >= self.capacity:
            logger.warning(f"Rejected breakpoint {decl.location}: {self.capacity} already declared")
            raise BreakpointCapacityExceeded(self.capacity)
        self._declarations.append(decl)
        entry = self.entry_for(decl)
        if entry.address is None:
            logger.info(f"Breakpoint {decl.location} has no address; it stays disabled")
        return entry

    def undeclare(self, decl: BreakpointDeclaration) -> bool:
        """Drop an IDE declaration without touching the device."""
        if decl in self._declarations:
            self._declarations.remove(decl)
            return True
        return False

    def resolve(self, decl: BreakpointDeclaration) -> Optional[str]:
        """Address for a declaration, if the listing has one."""
        if decl.function is not None:
            return self.mapper.resolve_function(decl.function)
        return self.mapper.resolve(decl.file or "", decl.line or 0)

    def entry_for(self, decl: BreakpointDeclaration) -> BreakpointEntry:
        address = self.resolve(decl)
        if address is None:
            return BreakpointEntry(declaration=decl)
        slot = self.slot_for(address)
        if slot is not None:
            return BreakpointEntry(declaration=decl, address=address,
                                   state=BreakpointState.ARMED, slot=slot.slot)
        return BreakpointEntry(declaration=decl, address=address,
                               state=BreakpointState.RESOLVED)

    def entries(self) -> List[BreakpointEntry]:
        """Every declaration with its current state."""
        return [self.entry_for(decl) for decl in self._declarations]

    def unresolved(self) -> List[BreakpointDeclaration]:
        return [decl for decl in self._declarations if self.resolve(decl) is None]

    # === Device slots ===

    @property
    def device_breakpoints(self) -> List[DeviceBreakpoint]:
        """Slots from the most recent list query."""
        return list(self._device)

    def slot_for(self, address: str) -> Optional[DeviceBreakpoint]:
        wanted = normalize_address(address)
        for slot in self._device:
            if slot.address == wanted:
                return slot
        return None

    async def refresh(self) -> List[DeviceBreakpoint]:
        """Query the device for its enabled slots."""
        output = await self._command(["bp", "--list"])
        self._device = parse_breakpoint_list(output)
        logger.info(f"Device breakpoints updated: {len(self._device)} breakpoints")
        return self.device_breakpoints

    async def _refresh_after_failure(self) -> None:
        try:
            await self.refresh()
        except CommandFailed as e:
            logger.warning(f"Could not re-read device breakpoints: {e}")
            self._device = []

    async def set_enabled(self, address: str, enabled: bool) -> List[DeviceBreakpoint]:
        """Arm or clear the hardware breakpoint at an address.

        Returns:
            Slot list confirmed by the device after the change

        Raises:
            BreakpointCapacityExceeded: If all slots are already armed
            BreakpointNotConfirmed: If the slot list disagrees afterwards
            CommandFailed: If a probe command fails
        """
        address = normalize_address(address)

        if enabled:
            if self.slot_for(address) is None and len(self._device) >= self.capacity:
                raise BreakpointCapacityExceeded(self.capacity)
            logger.info(f"Enabling breakpoint at {address}")
            args = ["bp", address]
        else:
            logger.info(f"Disabling breakpoint at {address}")
            args = ["bp", "--clear", address]

        try:
            await self._command(args)
        except CommandFailed:
            await self._refresh_after_failure()
            raise

        slots = await self.refresh()
        armed = self.slot_for(address) is not None
        if armed != enabled:
            state = "enabled" if enabled else "cleared"
            raise BreakpointNotConfirmed(
                f"Device did not report breakpoint at {address} as {state}"
            )
        return slots

    async def arm(self, decl: BreakpointDeclaration) -> DeviceBreakpoint:
        """Arm a declared breakpoint.

        Raises:
            UnresolvedAddress: If the declaration has no address
        """
        address = self.resolve(decl)
        if address is None:
            raise UnresolvedAddress(f"No address known for breakpoint {decl.location}")
        if decl not in self._declarations:
            self.declare(decl)
        await self.set_enabled(address, True)
        slot = self.slot_for(address)
        assert slot is not None
        return slot

    async def disarm(self, decl: BreakpointDeclaration) -> List[DeviceBreakpoint]:
        address = self.resolve(decl)
        if address is None:
            raise UnresolvedAddress(f"No address known for breakpoint {decl.location}")
        return await self.set_enabled(address, False)

    async def remove(self, decl: BreakpointDeclaration) -> List[DeviceBreakpoint]:
        """Remove an IDE declaration and clear its slot if it is armed."""
        self.undeclare(decl)
        address = self.resolve(decl)
        if address is None:
            return self.device_breakpoints

        await self.refresh()
        if self.slot_for(address) is None:
            return self.device_breakpoints
        return await self.set_enabled(address, False)

    async def clear_slot(self, slot: int) -> List[DeviceBreakpoint]:
        """Clear a hardware slot by index."""
        logger.info(f"Clearing device breakpoint at slot {slot}")
        try:
            await self._command(["bp", "--clear", "--slot", str(slot)])
        except CommandFailed:
            await self._refresh_after_failure()
            raise

        slots = await self.refresh()
        if any(s.slot == slot for s in slots):
            raise BreakpointNotConfirmed(f"Device still reports slot {slot} as enabled")
        return slots

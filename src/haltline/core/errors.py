"""Error kinds raised by the debug session core."""

from typing import List, Optional


class DebugError(Exception):
    """Base class for all haltline errors."""


class NoActiveSession(DebugError):
    """Operation requires an active debug session."""

    def __init__(self, message: str = "No active debug session") -> None:
        super().__init__(message)


class SessionAlreadyActive(DebugError):
    """A second session was requested while one is still active."""

    def __init__(self, message: str = "Debug session already active") -> None:
        super().__init__(message)


class NoTargetBoard(DebugError):
    """No board is attached and offline debugging is not allowed."""


class ToolUnavailable(DebugError):
    """The debug-probe executable is missing or not executable."""


class CommandFailed(DebugError):
    """A probe command exited non-zero or could not be run.

    Attributes:
        command_args: Probe arguments (without the executable and port)
        returncode: Process exit code, if the process ran
        stderr: Captured stderr text
    """

    def __init__(
        self,
        message: str,
        args: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command_args = list(args or [])
        self.returncode = returncode
        self.stderr = stderr


class CommandTimedOut(CommandFailed):
    """A probe command exceeded its timeout and was killed."""

    def __init__(self, args: List[str], timeout: float) -> None:
        super().__init__(
            f"Probe command timed out after {timeout:g}s: {' '.join(args)}",
            args=args,
        )
        self.timeout = timeout


class MalformedImage(DebugError):
    """ELF header or table points outside the image.

    Never escapes the symbol reader; callers see an empty symbol list.
    """


class BreakpointCapacityExceeded(DebugError):
    """More breakpoints requested than the hardware has slots."""

    def __init__(self, capacity: int) -> None:
        super().__init__(f"You can add max {capacity} breakpoints")
        self.capacity = capacity


class UnresolvedAddress(DebugError):
    """A breakpoint declaration has no known address."""


class BreakpointNotConfirmed(DebugError):
    """The device slot list did not confirm a requested change."""


class OfflineSession(DebugError):
    """Hardware command refused because the session has no target attached."""


class TargetRunning(DebugError):
    """Command conflicts with the running monitor; halt the target first."""

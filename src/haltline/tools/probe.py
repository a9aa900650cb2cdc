"""Debug-probe command executor.

Runs the external probe tool as ``<probe> --port <port> [--verbose]
<subcommand> [args...]``, one command per call.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import List, Optional

from haltline.core.errors import CommandFailed, CommandTimedOut, ToolUnavailable
from haltline.tools.process import force_kill

logger = logging.getLogger(__name__)


@dataclass
class ProbeConfig:
    """Probe invocation settings.

    Attributes:
        probe_path: Path or name of the probe executable
        port: Transport identifier (serial port)
        verbose: Add --verbose to every invocation
        timeout: Default command timeout in seconds
    """
    probe_path: str = "swd-debugger"
    port: str = ""
    verbose: bool = False
    timeout: float = 10.0


class ProbeCommandExecutor:
    """Runs probe commands and captures their output.

    The executor does not queue: each ``run`` spawns one process and
    waits for it. Ordering across commands belongs to the caller.

    Example:
        executor = ProbeCommandExecutor(ProbeConfig(port="/dev/ttyACM0"))
        output = await executor.run(["read-all"])
    """

    def __init__(self, config: Optional[ProbeConfig] = None) -> None:
        """Initialize the executor.

        Args:
            config: Probe configuration (uses defaults if not provided)
        """
        self.config = config or ProbeConfig()
        self.process: Optional[asyncio.subprocess.Process] = None

    def build_command(self, args: List[str]) -> List[str]:
        """Build the full argv for a probe subcommand."""
        cmd = [self.config.probe_path, "--port", self.config.port]
        if self.config.verbose:
            cmd.append("--verbose")
        cmd.extend(args)
        return cmd

    def resolve_executable(self) -> Optional[str]:
        """Locate the probe executable.

        Returns:
            Absolute path, or None if not found / not executable
        """
        path = self.config.probe_path
        if os.path.dirname(path):
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return os.path.abspath(path)
            return None
        return shutil.which(path)

    def check_available(self) -> str:
        """Ensure the probe executable exists and is executable.

        Returns:
            Resolved executable path

        Raises:
            ToolUnavailable: If the executable cannot be run
        """
        resolved = self.resolve_executable()
        if resolved is None:
            raise ToolUnavailable(
                f"Debug probe not found at '{self.config.probe_path}'\n"
                f"Try: --probe-path /path/to/swd-debugger"
            )
        return resolved

    async def _spawn(self, args: List[str]) -> asyncio.subprocess.Process:
        cmd = self.build_command(args)
        logger.debug(f"Executing probe command: {' '.join(cmd)}")
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ToolUnavailable(
                f"Debug probe not found at '{self.config.probe_path}'"
            )
        except PermissionError:
            raise ToolUnavailable(
                f"Permission denied running debug probe at '{self.config.probe_path}'\n"
                f"Check that the file is executable: chmod +x {self.config.probe_path}"
            )
        except OSError as e:
            raise CommandFailed(f"Probe process error: {e}", args=args)

    async def run(self, args: List[str], timeout: Optional[float] = None) -> str:
        """Run one probe command to completion.

        Args:
            args: Subcommand and its arguments
            timeout: Seconds before the process is killed (config default if None)

        Returns:
            Captured stdout text

        Raises:
            ToolUnavailable: If the probe cannot be spawned
            CommandTimedOut: If the command exceeds the timeout
            CommandFailed: If the command exits non-zero
        """
        limit = self.config.timeout if timeout is None else timeout
        process = await self._spawn(args)
        self.process = process

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            await force_kill(process)
            logger.error(f"Probe command timed out: {' '.join(args)}")
            raise CommandTimedOut(args, limit)
        except asyncio.CancelledError:
            await force_kill(process)
            raise
        finally:
            if self.process is process:
                self.process = None

        out_text = stdout.decode(errors="replace") if stdout else ""
        err_text = stderr.decode(errors="replace") if stderr else ""
        if out_text:
            logger.debug(out_text.rstrip())
        if err_text:
            logger.debug(err_text.rstrip())

        if process.returncode != 0:
            raise CommandFailed(
                f"Probe command failed with exit code {process.returncode}: "
                f"{err_text.strip()}",
                args=args,
                returncode=process.returncode,
                stderr=err_text,
            )
        return out_text

    async def spawn(self, args: List[str]) -> asyncio.subprocess.Process:
        """Start a long-lived probe process with piped stdout/stderr.

        The caller owns the returned process and must stop it.
        """
        return await self._spawn(args)

    async def kill(self) -> None:
        """Force-kill the in-flight command, if any."""
        process = self.process
        self.process = None
        if process is not None:
            logger.info(f"Killing in-flight probe process {process.pid}")
            await force_kill(process)

    @property
    def busy(self) -> bool:
        """Check if a command is in flight."""
        return self.process is not None

"""Process termination helpers."""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


async def terminate_with_escalation(
    process: Optional[asyncio.subprocess.Process],
    grace: float = 0.5,
) -> Optional[int]:
    """Terminate a process, escalating to a kill after a grace period.

    Sends SIGTERM, waits up to ``grace`` seconds, then sends SIGKILL and
    reaps the process.

    Args:
        process: Process to stop (None and already-exited are no-ops)
        grace: Seconds to wait for a graceful exit

    Returns:
        Exit code, or None if there was no process
    """
    if process is None:
        return None
    if process.returncode is not None:
        return process.returncode

    try:
        process.terminate()
    except ProcessLookupError:
        return await process.wait()

    try:
        return await asyncio.wait_for(process.wait(), timeout=grace)
    except asyncio.TimeoutError:
        logger.warning(
            f"Process {process.pid} ignored SIGTERM for {grace:g}s, killing"
        )

    return await force_kill(process)


async def force_kill(
    process: Optional[asyncio.subprocess.Process],
) -> Optional[int]:
    """Kill a process immediately and reap it."""
    if process is None:
        return None
    if process.returncode is not None:
        return process.returncode
    try:
        process.kill()
    except ProcessLookupError:
        pass
    return await process.wait()

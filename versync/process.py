"""Runs external tools as bounded subprocesses."""
import asyncio
import sys
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

from .constants import SUBPROCESS_CREATION_FLAGS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stderr: str = ''


@asynccontextmanager
async def spawn(command: Sequence[str], cwd: Optional[Path] = None, capture_stderr: bool = False) -> AsyncIterator[asyncio.subprocess.Process]:
    """
    Starts a process and guarantees it is reaped when the block exits.

    If the block exits while the process is still running (timeout,
    cancellation, any error), the process is killed and waited for.
    """
    kwargs = {
        'stdout': asyncio.subprocess.DEVNULL,
        'stderr': asyncio.subprocess.PIPE if capture_stderr else asyncio.subprocess.DEVNULL,
        'stdin': asyncio.subprocess.DEVNULL,
    }
    if sys.platform == 'win32':
        kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

    process = await asyncio.create_subprocess_exec(*command, cwd=str(cwd) if cwd else None, **kwargs)
    try:
        yield process
    finally:
        if process.returncode is None:
            logger.debug(f"Killing {command[0]} (PID: {process.pid})")
            try:
                process.kill()
            except ProcessLookupError:
                pass  # Already gone
            await asyncio.shield(process.wait())


async def run_process(command: Sequence[str], cwd: Optional[Path] = None, timeout: float = 60.0,
                      capture_stderr: bool = False) -> ProcessResult:
    """
    Runs a command to completion with a time limit.

    Raises:
        FileNotFoundError: The executable does not exist.
        asyncio.TimeoutError: The command did not finish within `timeout` seconds.
    """
    async with spawn(command, cwd=cwd, capture_stderr=capture_stderr) as process:
        _, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
    stderr = stderr_bytes.decode('utf-8', 'replace').strip() if stderr_bytes else ''
    return ProcessResult(process.returncode, stderr)

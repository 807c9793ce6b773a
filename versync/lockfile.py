"""Regenerates the lock artifact after a lock-dependent manifest changed."""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from .constants import LOCK_BUILD_TOOL, LOCK_BUILD_ARGS, LOCK_REGEN_TIMEOUT
from .exceptions import LockRegenerationFailed
from .process import ProcessResult, run_process

Runner = Callable[..., Awaitable[ProcessResult]]


@dataclass(frozen=True)
class LockResult:
    ok: bool
    lock_path: Optional[Path] = None
    error: Optional[LockRegenerationFailed] = None


class LockRegenerator:
    """
    Refreshes a lock file by running the native build tool (`cargo check`).

    Failure here is never fatal: the manifests are already correct, the lock
    file is simply left stale for the developer to refresh by hand.
    """

    def __init__(self, build_tool: str = LOCK_BUILD_TOOL, args: Sequence[str] = LOCK_BUILD_ARGS,
                 timeout: float = LOCK_REGEN_TIMEOUT, lock_file: Optional[Path] = None,
                 runner: Runner = run_process):
        self.command = [build_tool, *args]
        self.timeout = timeout
        self.lock_file = lock_file
        self.runner = runner
        self.logger = logging.getLogger(__name__)

    async def regenerate(self, working_dir: Path) -> LockResult:
        """Runs the build tool in `working_dir`; returns a failed LockResult instead of raising."""
        command_text = ' '.join(self.command)
        self.logger.info(f"Lock-dependent manifest changed, running '{command_text}' in {working_dir}...")
        try:
            result = await self.runner(self.command, cwd=working_dir, timeout=self.timeout)
            if result.returncode != 0:
                reason = f"exit code {result.returncode}"
            else:
                self.logger.info("Lock file updated.")
                return LockResult(ok=True, lock_path=self.lock_file)
        except FileNotFoundError:
            reason = f"'{self.command[0]}' not found on PATH"
        except asyncio.TimeoutError:
            reason = f"timed out after {self.timeout:.0f}s"
        except OSError as e:
            reason = str(e)

        error = LockRegenerationFailed(command_text, reason)
        self.logger.warning(
            f"Could not automatically update the lock file ({reason}). "
            f"You may need to run '{command_text}' manually in '{working_dir}'."
        )
        return LockResult(ok=False, error=error)

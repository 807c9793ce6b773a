"""Hands changed files to version control for the next commit."""
import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List

from .constants import STAGING_TIMEOUT
from .exceptions import StagingFailed
from .process import ProcessResult, run_process

Runner = Callable[..., Awaitable[ProcessResult]]


def dedupe_paths(paths: Iterable[Path]) -> List[Path]:
    """Removes duplicates, keeping the first occurrence of each path."""
    seen = set()
    unique = []
    for path in paths:
        key = Path(path).resolve()
        if key in seen:
            continue
        seen.add(key)
        unique.append(Path(path))
    return unique


class StagingGateway:
    """Stages files with `git add`."""

    def __init__(self, root: Path, git: str = 'git', timeout: float = STAGING_TIMEOUT,
                 runner: Runner = run_process):
        self.root = Path(root)
        self.git = git
        self.timeout = timeout
        self.runner = runner
        self.logger = logging.getLogger(__name__)

    async def stage(self, paths: Iterable[Path]) -> List[Path]:
        """
        Stages the given files and returns the deduplicated list that was staged.

        Does nothing (and spawns nothing) for an empty input.

        Raises:
            StagingFailed: git is missing, timed out, or exited non-zero.
        """
        unique = dedupe_paths(paths)
        if not unique:
            self.logger.debug("Nothing to stage.")
            return []

        command = [self.git, 'add', '--', *(str(p) for p in unique)]
        self.logger.info("Staging synchronized version files...")
        try:
            result = await self.runner(command, cwd=self.root, timeout=self.timeout, capture_stderr=True)
        except FileNotFoundError as e:
            raise StagingFailed(f"'{self.git}' not found: {e}") from e
        except asyncio.TimeoutError as e:
            raise StagingFailed(f"'git add' timed out after {self.timeout:.0f}s") from e
        except OSError as e:
            raise StagingFailed(f"Could not run '{self.git}': {e}") from e

        if result.returncode != 0:
            detail = result.stderr or f"exit code {result.returncode}"
            raise StagingFailed(f"'git add' failed: {detail}")
        self.logger.info("Files staged. Your commit will now include the synchronized versions.")
        return unique

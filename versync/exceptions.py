"""
Defines custom exceptions used throughout the application.

Build-time errors map onto distinct process exit codes so a failing
pre-commit hook can be told apart from a misconfigured one.
"""

from enum import Enum, IntEnum
from pathlib import Path
from typing import Optional, Sequence


class ExitCode(IntEnum):
    """Process exit statuses for the build-time sync command."""
    OK = 0
    UNEXPECTED = 1
    CONFIG = 2
    MANIFEST_UNREADABLE = 3
    VERSION_FIELD_MISSING = 4
    WRITE_FAILED = 5
    STAGING_FAILED = 6
    OUT_OF_SYNC = 7


class VersyncError(Exception):
    """Base class for all application errors."""
    exit_code = ExitCode.UNEXPECTED


class ConfigError(VersyncError):
    """The project configuration file is malformed or invalid."""
    exit_code = ExitCode.CONFIG


class ManifestUnreadable(VersyncError):
    """A manifest is missing, unreadable, or cannot be parsed."""
    exit_code = ExitCode.MANIFEST_UNREADABLE

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Cannot read manifest {path}: {reason}")
        self.path = path
        self.reason = reason


class VersionFieldMissing(VersyncError):
    """The extraction rule found no version token in a manifest."""
    exit_code = ExitCode.VERSION_FIELD_MISSING

    def __init__(self, path: Optional[Path], rule: str):
        where = str(path) if path else "manifest"
        super().__init__(f"No version field matching {rule} in {where}")
        self.path = path
        self.rule = rule


class ManifestWriteFailed(VersyncError):
    """Writing an updated manifest to disk failed."""
    exit_code = ExitCode.WRITE_FAILED


class PartialApplyError(ManifestWriteFailed):
    """Raised when a sync plan stopped part-way; earlier writes are kept."""

    def __init__(self, failed_path: Path, written_paths: Sequence[Path], cause: BaseException):
        written = ', '.join(str(p) for p in written_paths) or 'none'
        super().__init__(f"Failed to write {failed_path}: {cause}. Already written: {written}")
        self.failed_path = failed_path
        self.written_paths = list(written_paths)
        self.cause = cause


class LockRegenerationFailed(VersyncError):
    """The build tool could not refresh the lock artifact. Never fatal."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"'{command}' failed: {reason}")
        self.command = command
        self.reason = reason


class StagingFailed(VersyncError):
    """Handing changed files to version control failed."""
    exit_code = ExitCode.STAGING_FAILED


class CheckFailureReason(str, Enum):
    NETWORK = 'network'
    PARSE = 'parse'
    REMOTE_FORMAT = 'remote-format'


class UpdateCheckFailed(VersyncError):
    """The remote release metadata could not be fetched or understood."""

    def __init__(self, reason: CheckFailureReason, detail: str):
        super().__init__(f"Update check failed ({reason.value}): {detail}")
        self.reason = reason
        self.detail = detail


class UpdateTriggerFailed(VersyncError):
    """The platform updater reported a failure."""
    pass


class UpdateAlreadyInProgress(VersyncError):
    """A second update was requested while one is still running."""
    pass

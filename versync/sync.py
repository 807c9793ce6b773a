"""
Runs the build-time flow: read the authoritative version, sync the dependent
manifests, refresh the lock file if needed, and stage what changed.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import SyncSettings
from .lockfile import LockRegenerator, LockResult
from .manifests import VersionSource
from .staging import StagingGateway
from .synchronizer import ChangeSet, ManifestSynchronizer, SyncPlan


@dataclass
class SyncReport:
    """
    Summary of one sync run.

    Attributes:
        version: The authoritative version.
        plan: Mismatches found before writing.
        changes: Manifests written.
        lock: Lock regeneration result, if it ran.
        staged: Paths handed to git (empty when staging was skipped).
    """
    version: str
    plan: SyncPlan
    changes: ChangeSet
    lock: Optional[LockResult] = None
    staged: List[Path] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    @property
    def warnings(self) -> List[str]:
        if self.lock is not None and not self.lock.ok:
            return [str(self.lock.error)]
        return []


class SyncPipeline:
    """Wires the build-time components together for one project root."""

    def __init__(self, root: Path, settings: SyncSettings,
                 regenerator: Optional[LockRegenerator] = None,
                 gateway: Optional[StagingGateway] = None):
        self.root = Path(root)
        self.settings = settings
        self.logger = logging.getLogger(__name__)
        self.source = VersionSource(self.root / settings.primary_manifest, settings.primary_key_path)
        self.synchronizer = ManifestSynchronizer(self.root)
        self.regenerator = regenerator or LockRegenerator(
            settings.lock_build_tool, settings.lock_build_args, settings.lock_timeout,
            lock_file=self.root / settings.lock_file,
        )
        self.gateway = gateway or StagingGateway(self.root, settings.git_executable, settings.staging_timeout)

    def check(self) -> SyncPlan:
        """Dry run: reports mismatches without writing anything."""
        version = self.source.read()
        return self.synchronizer.plan(version, self.settings.manifests)

    async def run(self, stage: Optional[bool] = None) -> SyncReport:
        """
        Executes the full flow once.

        Manifest and staging errors propagate; a failed lock regeneration is
        only reported as a warning on the returned SyncReport.
        """
        stage = self.settings.stage_changes if stage is None else stage
        version = self.source.read()
        plan = self.synchronizer.plan(version, self.settings.manifests)
        if not plan:
            self.logger.info(f"All manifests already at {version}.")
            return SyncReport(version, plan, ChangeSet(paths=[]))

        changes = self.synchronizer.apply(plan)
        report = SyncReport(version, plan, changes)
        to_stage = list(changes.paths)

        if changes.needs_lock_regeneration:
            report.lock = await self.regenerator.regenerate(self.root / self.settings.lock_working_dir)
            if report.lock.ok and report.lock.lock_path and report.lock.lock_path.exists():
                to_stage.append(report.lock.lock_path)

        if stage:
            report.staged = await self.gateway.stage(to_stage)
        return report

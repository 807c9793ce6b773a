"""Plans and applies version edits across the dependent manifests."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Tuple

from .config import ManifestDescriptor
from .exceptions import PartialApplyError, VersyncError
from .manifests import adapter_for, read_text, write_text


@dataclass(frozen=True)
class PlanEntry:
    """One manifest whose version token differs from the authoritative one."""
    descriptor: ManifestDescriptor
    path: Path
    old: str
    new: str


@dataclass(frozen=True)
class SyncPlan:
    """Ordered mismatches found by a single planning pass. Empty when in sync."""
    entries: Tuple[PlanEntry, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


@dataclass
class ChangeSet:
    """
    Files written by `ManifestSynchronizer.apply`.

    Attributes:
        paths: Written files, in plan order.
        needs_lock_regeneration: True if any written manifest feeds the lock artifact.
    """
    paths: List[Path]
    needs_lock_regeneration: bool = False

    def __bool__(self) -> bool:
        return bool(self.paths)


class ManifestSynchronizer:
    """Brings each dependent manifest in line with the authoritative version."""

    def __init__(self, root: Path):
        """
        Initializes the ManifestSynchronizer.

        Args:
            root: Project root that descriptor paths are relative to.
        """
        self.root = Path(root)
        self.logger = logging.getLogger(__name__)

    def resolve(self, descriptor: ManifestDescriptor) -> Path:
        return self.root / descriptor.path

    def plan(self, authoritative: str, descriptors: Iterable[ManifestDescriptor]) -> SyncPlan:
        """
        Compares every manifest against the authoritative version.

        Raises:
            ManifestUnreadable: A manifest is missing or cannot be parsed.
            VersionFieldMissing: A manifest has no version token for its rule.
        """
        entries = []
        for descriptor in descriptors:
            path = self.resolve(descriptor)
            adapter = adapter_for(descriptor, path)
            result = adapter.detect_mismatch(read_text(path), authoritative)
            if result.matches:
                self.logger.debug(f"{descriptor.path} already at {authoritative}")
                continue
            self.logger.info(f"Version mismatch in {descriptor.path}: {result.old} -> {result.new}")
            entries.append(PlanEntry(descriptor, path, result.old, result.new))
        return SyncPlan(tuple(entries))

    def apply(self, plan: SyncPlan) -> ChangeSet:
        """
        Rewrites each planned manifest, stopping at the first failure.

        Files written before a failure are kept; the error lists them.

        Raises:
            PartialApplyError: A manifest could not be re-read or written.
        """
        changes = ChangeSet(paths=[])
        for entry in plan:
            adapter = adapter_for(entry.descriptor, entry.path)
            try:
                updated = adapter.rewrite(read_text(entry.path), entry.new)
                write_text(entry.path, updated)
            except (OSError, VersyncError) as e:
                self.logger.error(f"Failed to update {entry.descriptor.path}: {e}")
                raise PartialApplyError(entry.path, changes.paths, e) from e
            self.logger.info(f"Synced {entry.descriptor.path}: {entry.old} -> {entry.new}")
            changes.paths.append(entry.path)
            if entry.descriptor.lock_dependent:
                changes.needs_lock_regeneration = True
        return changes

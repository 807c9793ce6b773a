import pytest

from versync.config import FormatKind, ManifestDescriptor, SyncSettings
from versync.exceptions import ManifestUnreadable, PartialApplyError, VersionFieldMissing
from versync.synchronizer import ManifestSynchronizer
import versync.synchronizer as synchronizer_module


def descriptors():
    return SyncSettings().manifests


def snapshot(root):
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in root.rglob("*") if p.is_file()}


def test_plan_lists_only_mismatches(tauri_project):
    sync = ManifestSynchronizer(tauri_project)
    plan = sync.plan("0.2.0", descriptors())
    assert [(e.descriptor.path, e.old, e.new) for e in plan] == [
        ("src-tauri/tauri.conf.json", "0.1.0", "0.2.0"),
        ("src-tauri/Cargo.toml", "0.1.0", "0.2.0"),
    ]


def test_noop_plan_is_empty(tauri_project):
    plan = ManifestSynchronizer(tauri_project).plan("0.1.0", descriptors())
    assert not plan
    assert len(plan) == 0


def test_apply_then_plan_is_idempotent(tauri_project):
    sync = ManifestSynchronizer(tauri_project)
    changes = sync.apply(sync.plan("0.2.0", descriptors()))
    assert changes.paths == [
        tauri_project / "src-tauri" / "tauri.conf.json",
        tauri_project / "src-tauri" / "Cargo.toml",
    ]
    assert changes.needs_lock_regeneration
    assert not sync.plan("0.2.0", descriptors())


def test_single_mismatch_touches_only_that_file(tauri_project):
    cargo = tauri_project / "src-tauri" / "Cargo.toml"
    cargo.write_text(cargo.read_text(encoding="utf-8").replace('version = "0.1.0"', 'version = "0.2.0"', 1), encoding="utf-8")
    conf = tauri_project / "src-tauri" / "tauri.conf.json"
    conf.write_text(conf.read_text(encoding="utf-8").replace("0.1.0", "0.2.0"), encoding="utf-8")
    extra = ManifestDescriptor(path="extra.json")
    (tauri_project / "extra.json").write_text('{\n  "version": "0.0.9"\n}\n', encoding="utf-8")

    before = snapshot(tauri_project)
    sync = ManifestSynchronizer(tauri_project)
    changes = sync.apply(sync.plan("0.2.0", [*descriptors(), extra]))
    after = snapshot(tauri_project)

    assert changes.paths == [tauri_project / "extra.json"]
    assert not changes.needs_lock_regeneration
    assert {k for k in before if before[k] != after[k]} == {"extra.json"}


def test_missing_manifest_is_unreadable(tauri_project):
    (tauri_project / "src-tauri" / "tauri.conf.json").unlink()
    with pytest.raises(ManifestUnreadable):
        ManifestSynchronizer(tauri_project).plan("0.2.0", descriptors())


def test_missing_field_is_reported(tauri_project):
    (tauri_project / "src-tauri" / "Cargo.toml").write_text('[package]\nname = "mirror"\n', encoding="utf-8")
    with pytest.raises(VersionFieldMissing):
        ManifestSynchronizer(tauri_project).plan("0.2.0", descriptors())


def test_write_failure_stops_and_reports_written(tauri_project, monkeypatch):
    extra = ManifestDescriptor(path="extra.toml", kind=FormatKind.LINE_ORIENTED)
    (tauri_project / "extra.toml").write_text('version = "0.1.0"\n', encoding="utf-8")
    sync = ManifestSynchronizer(tauri_project)
    plan = sync.plan("0.2.0", [*descriptors(), extra])

    real_write = synchronizer_module.write_text
    attempted = []

    def flaky_write(path, content):
        attempted.append(path.name)
        if path.name == "Cargo.toml":
            raise PermissionError("read-only file system")
        real_write(path, content)

    monkeypatch.setattr(synchronizer_module, "write_text", flaky_write)
    with pytest.raises(PartialApplyError) as excinfo:
        sync.apply(plan)

    assert excinfo.value.failed_path == tauri_project / "src-tauri" / "Cargo.toml"
    assert excinfo.value.written_paths == [tauri_project / "src-tauri" / "tauri.conf.json"]
    assert attempted == ["tauri.conf.json", "Cargo.toml"]
    # Earlier write kept, later file untouched.
    assert '"version": "0.2.0"' in (tauri_project / "src-tauri" / "tauri.conf.json").read_text(encoding="utf-8")
    assert (tauri_project / "extra.toml").read_text(encoding="utf-8") == 'version = "0.1.0"\n'

"""Tests for BackupManager: backups, manifest, rollback, retention, .gitignore."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from cpm_migrate.backup_manager import (
    BACKUP_DIRECTORY_NAME,
    MANIFEST_FILE_NAME,
    BackupManager,
    new_timestamp,
)
from cpm_migrate.exceptions import FileOperationError
from cpm_migrate.models.backup import BackupEntry, BackupManifest, parse_backup_timestamp
from cpm_migrate.models.options import MigrationOptions


@pytest.fixture
def manager(reporter) -> BackupManager:
    return BackupManager(reporter)


@pytest.fixture
def backup_dir(tmp_path: Path, manager: BackupManager) -> Path:
    return Path(manager.create_backup_directory(MigrationOptions(backup_dir=str(tmp_path))))


class TestBackupDirectory:
    def test_created_under_backup_dir(self, tmp_path: Path, manager):
        path = manager.create_backup_directory(MigrationOptions(backup_dir=str(tmp_path)))
        assert path == str(tmp_path / BACKUP_DIRECTORY_NAME)
        assert Path(path).is_dir()

    def test_idempotent(self, tmp_path: Path, manager):
        opts = MigrationOptions(backup_dir=str(tmp_path))
        assert manager.create_backup_directory(opts) == manager.create_backup_directory(opts)

    def test_disabled(self, tmp_path: Path, manager):
        assert manager.create_backup_directory(MigrationOptions(no_backup=True)) == ""

    def test_unwritable_parent(self, tmp_path: Path, manager):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(FileOperationError):
            manager.create_backup_directory(MigrationOptions(backup_dir=str(blocker)))


class TestCreateBackup:
    def test_copy_named_with_timestamp(self, tmp_path: Path, manager, backup_dir):
        project = tmp_path / "App.csproj"
        project.write_text("<Project />")
        entry = manager.create_backup_for_project(str(project), str(backup_dir), "20240101120000123")
        assert entry.backup_file_name == "App.csproj.backup_20240101120000123"
        assert (backup_dir / entry.backup_file_name).read_text() == "<Project />"
        assert entry.original_path == str(project)

    def test_same_name_in_one_run_is_disambiguated(self, tmp_path: Path, manager, backup_dir):
        a = tmp_path / "a" / "App.csproj"
        b = tmp_path / "b" / "App.csproj"
        for p in (a, b):
            p.parent.mkdir()
            p.write_text(str(p))
        ts = "20240101120000123"
        first = manager.create_backup_for_project(str(a), str(backup_dir), ts)
        second = manager.create_backup_for_project(str(b), str(backup_dir), ts)
        assert first.backup_file_name != second.backup_file_name
        assert (backup_dir / second.backup_file_name).read_text() == str(b)

    def test_timestamp_has_milliseconds(self):
        now = datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc)
        assert new_timestamp(now) == "20240506070809123"


class TestManifest:
    def test_written_with_camel_case_keys(self, manager, backup_dir):
        manifest = BackupManifest(
            timestamp="20240101120000123",
            props_file_path="/repo/Directory.Packages.props",
            props_file_existed=False,
            backups=[BackupEntry(original_path="/repo/App.csproj", backup_file_name="App.csproj.backup_1")],
        )
        manager.write_manifest(str(backup_dir), manifest)
        raw = json.loads((backup_dir / MANIFEST_FILE_NAME).read_text())
        assert raw["propsFileExisted"] is False
        assert raw["backups"][0] == {"originalPath": "/repo/App.csproj", "backupFileName": "App.csproj.backup_1"}
        assert manager.read_manifest(str(backup_dir)) == manifest

    def test_missing_is_none(self, manager, backup_dir):
        assert manager.read_manifest(str(backup_dir)) is None

    def test_malformed_is_none_with_warning(self, manager, backup_dir, reporter):
        (backup_dir / MANIFEST_FILE_NAME).write_text("{ nope")
        assert manager.read_manifest(str(backup_dir)) is None
        assert reporter.warnings

    def test_undecodable_is_none_with_warning(self, manager, backup_dir, reporter):
        (backup_dir / MANIFEST_FILE_NAME).write_bytes(b"\xff\xfe{\"timestamp\": 1}")
        assert manager.read_manifest(str(backup_dir)) is None
        assert reporter.warnings


class TestRestore:
    def test_missing_backup_raises(self, manager, backup_dir, tmp_path):
        entry = BackupEntry(original_path=str(tmp_path / "App.csproj"), backup_file_name="gone.backup_1")
        with pytest.raises(FileOperationError) as exc_info:
            manager.restore_file(str(backup_dir), entry)
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)


def _migrated_tree(tmp_path: Path, manager: BackupManager, backup_dir: Path, props_existed: bool):
    """Back up two projects, then simulate a migration rewriting them."""
    ts = "20240101120000123"
    entries = []
    projects = []
    for name in ("Web", "Core"):
        p = tmp_path / f"{name}.csproj"
        p.write_text(f"original {name}")
        entries.append(manager.create_backup_for_project(str(p), str(backup_dir), ts))
        p.write_text(f"migrated {name}")
        projects.append(p)
    props = tmp_path / "Directory.Packages.props"
    props.write_text("<Project />")
    manifest = BackupManifest(
        timestamp=ts,
        props_file_path=str(props),
        props_file_existed=props_existed,
        backups=entries,
    )
    manager.write_manifest(str(backup_dir), manifest)
    return projects, props, manifest


class TestRollback:
    def test_restores_and_deletes_new_props(self, tmp_path, manager, backup_dir):
        projects, props, manifest = _migrated_tree(tmp_path, manager, backup_dir, props_existed=False)
        report = manager.rollback(str(backup_dir), manifest)
        assert report.success
        assert report.restored == 2
        assert [p.read_text() for p in projects] == ["original Web", "original Core"]
        assert not props.exists()
        assert report.props_deleted
        assert not backup_dir.exists()

    def test_keeps_props_that_existed_before(self, tmp_path, manager, backup_dir):
        _, props, manifest = _migrated_tree(tmp_path, manager, backup_dir, props_existed=True)
        report = manager.rollback(str(backup_dir), manifest)
        assert report.success
        assert props.exists()
        assert not report.props_deleted

    def test_partial_failure_deletes_nothing(self, tmp_path, manager, backup_dir):
        projects, props, manifest = _migrated_tree(tmp_path, manager, backup_dir, props_existed=False)
        (backup_dir / manifest.backups[0].backup_file_name).unlink()

        report = manager.rollback(str(backup_dir), manifest)

        assert not report.success
        assert report.failed == 1
        assert report.restored == 1
        # Every other entry is still attempted.
        assert projects[1].read_text() == "original Core"
        assert props.exists()
        assert (backup_dir / manifest.backups[1].backup_file_name).exists()
        assert (backup_dir / MANIFEST_FILE_NAME).exists()

    def test_cleanup_leaves_unrelated_files(self, tmp_path, manager, backup_dir):
        _, _, manifest = _migrated_tree(tmp_path, manager, backup_dir, props_existed=False)
        (backup_dir / "notes.txt").write_text("keep me")
        manager.rollback(str(backup_dir), manifest)
        assert (backup_dir / "notes.txt").exists()
        assert not (backup_dir / MANIFEST_FILE_NAME).exists()


class TestRetention:
    def _make_sets(self, backup_dir: Path, timestamps: list[str]) -> None:
        for ts in timestamps:
            (backup_dir / f"App.csproj.backup_{ts}").write_text("x" * 10)
            (backup_dir / f"Lib.csproj.backup_{ts}").write_text("y" * 5)

    def test_history_newest_first(self, manager, backup_dir):
        self._make_sets(backup_dir, ["20240101000000000", "20240301000000000", "20240201000000000"])
        history = manager.get_backup_history(str(backup_dir))
        assert [h.timestamp for h in history] == [
            "20240301000000000",
            "20240201000000000",
            "20240101000000000",
        ]
        assert history[0].file_count == 2
        assert history[0].total_size == 15

    def test_legacy_timestamps_grouped(self, manager, backup_dir):
        (backup_dir / "App.csproj.backup_20230101000000Z").write_text("x")
        history = manager.get_backup_history(str(backup_dir))
        assert history[0].parsed_timestamp == datetime(2023, 1, 1, tzinfo=timezone.utc)

    def test_prune_keeps_newest(self, manager, backup_dir):
        self._make_sets(backup_dir, ["20240101000000000", "20240201000000000", "20240301000000000"])
        result = manager.prune_backups(str(backup_dir), keep=1)
        assert result.success
        assert result.backups_removed == 2
        assert result.files_removed == 4
        assert result.bytes_freed == 30
        assert [h.timestamp for h in manager.get_backup_history(str(backup_dir))] == ["20240301000000000"]

    def test_prune_removes_manifest_of_pruned_set(self, manager, backup_dir):
        self._make_sets(backup_dir, ["20240101000000000", "20240201000000000"])
        manager.write_manifest(
            str(backup_dir),
            BackupManifest(timestamp="20240101000000000", props_file_path="p", props_file_existed=False),
        )
        manager.prune_backups(str(backup_dir), keep=1)
        assert not (backup_dir / MANIFEST_FILE_NAME).exists()

    def test_prune_all(self, manager, backup_dir):
        self._make_sets(backup_dir, ["20240101000000000", "20240201000000000"])
        result = manager.prune_all_backups(str(backup_dir))
        assert result.backups_removed == 2
        assert not backup_dir.exists()

    def test_parse_backup_timestamp_rejects_garbage(self):
        assert parse_backup_timestamp("yesterday") is None


class TestGitignore:
    def _opts(self, tmp_path: Path, **kw) -> MigrationOptions:
        return MigrationOptions(add_gitignore=True, gitignore_dir=str(tmp_path), **kw)

    def test_creates_file(self, tmp_path, manager):
        assert manager.manage_gitignore(self._opts(tmp_path), str(tmp_path / ".cpm_backup"))
        assert (tmp_path / ".gitignore").read_text().splitlines()[-1] == ".cpm_backup/"

    def test_appends_once(self, tmp_path, manager):
        (tmp_path / ".gitignore").write_text("bin/\nobj/")
        opts = self._opts(tmp_path)
        assert manager.manage_gitignore(opts, str(tmp_path / ".cpm_backup"))
        assert not manager.manage_gitignore(opts, str(tmp_path / ".cpm_backup"))
        content = (tmp_path / ".gitignore").read_text()
        assert content.count(".cpm_backup/") == 1
        assert content.startswith("bin/\nobj/\n")

    def test_existing_entry_without_slash(self, tmp_path, manager):
        (tmp_path / ".gitignore").write_text(".cpm_backup\n")
        assert not manager.manage_gitignore(self._opts(tmp_path), str(tmp_path / ".cpm_backup"))

    def test_noop_when_not_requested(self, tmp_path, manager):
        opts = MigrationOptions(gitignore_dir=str(tmp_path))
        assert not manager.manage_gitignore(opts, str(tmp_path / ".cpm_backup"))
        assert not (tmp_path / ".gitignore").exists()

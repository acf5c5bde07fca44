"""Backups, the rollback manifest, and backup retention."""

from __future__ import annotations

import os
import re
import shutil
from datetime import datetime, timezone

import pydantic
import structlog

from cpm_migrate.exceptions import FileOperationError
from cpm_migrate.models.backup import (
    BackupEntry,
    BackupFile,
    BackupManifest,
    BackupSetInfo,
    PruneResult,
    RollbackReport,
)
from cpm_migrate.models.options import MigrationOptions
from cpm_migrate.reporting.base import Reporter

log = structlog.get_logger(__name__)

BACKUP_DIRECTORY_NAME = ".cpm_backup"
MANIFEST_FILE_NAME = "backup_manifest.json"
GITIGNORE_COMMENT = "# cpm-migrate backup directory"

_BACKUP_FILE_RE = re.compile(r"^(?P<name>.+)\.backup_(?P<ts>\d{14}(?:\d{3}|Z))$")


def new_timestamp(now: datetime | None = None) -> str:
    """UTC ``YYYYmmddHHMMSS`` plus milliseconds, shared by every file in a run."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"


class BackupManager:
    def __init__(self, reporter: Reporter | None = None):
        self.reporter = reporter

    # ── directory ──

    def get_backup_directory_path(self, options: MigrationOptions) -> str:
        return os.path.join(os.path.abspath(options.backup_dir or "."), BACKUP_DIRECTORY_NAME)

    def create_backup_directory(self, options: MigrationOptions) -> str:
        """Create the backup directory; ``""`` when backups are disabled."""
        if options.no_backup:
            return ""
        path = self.get_backup_directory_path(options)
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise FileOperationError(f"Cannot create backup directory '{path}': {e}") from e
        return path

    # ── per-file backups ──

    def create_backup_for_project(
        self, file_path: str, backup_dir: str, timestamp: str
    ) -> BackupEntry:
        """Copy ``file_path`` into ``backup_dir`` as ``<name>.backup_<timestamp>``."""
        name = os.path.basename(file_path)
        backup_name = f"{name}.backup_{timestamp}"
        n = 1
        while os.path.exists(os.path.join(backup_dir, backup_name)):
            backup_name = f"{name}.{n}.backup_{timestamp}"
            n += 1
        try:
            shutil.copy2(file_path, os.path.join(backup_dir, backup_name))
        except OSError as e:
            raise FileOperationError(f"Cannot back up '{file_path}': {e}") from e
        log.debug("backup.created", file=file_path, backup=backup_name)
        return BackupEntry(original_path=os.path.abspath(file_path), backup_file_name=backup_name)

    def restore_file(self, backup_dir: str, entry: BackupEntry) -> None:
        backup_path = os.path.join(backup_dir, entry.backup_file_name)
        if not os.path.isfile(backup_path):
            raise FileOperationError(
                f"Backup file not found: {entry.backup_file_name}"
            ) from FileNotFoundError(backup_path)
        try:
            shutil.copy2(backup_path, entry.original_path)
        except OSError as e:
            raise FileOperationError(f"Cannot restore '{entry.original_path}': {e}") from e

    # ── manifest ──

    def manifest_path(self, backup_dir: str) -> str:
        return os.path.join(backup_dir, MANIFEST_FILE_NAME)

    def write_manifest(self, backup_dir: str, manifest: BackupManifest) -> None:
        try:
            with open(self.manifest_path(backup_dir), "w", encoding="utf-8") as f:
                f.write(manifest.model_dump_json(by_alias=True, indent=2))
        except OSError as e:
            raise FileOperationError(f"Cannot write backup manifest in '{backup_dir}': {e}") from e

    def read_manifest(self, backup_dir: str) -> BackupManifest | None:
        """Return the manifest, or ``None`` if it is missing or malformed."""
        path = self.manifest_path(backup_dir)
        if not os.path.isfile(path):
            return None
        try:
            with open(path, encoding="utf-8-sig") as f:
                return BackupManifest.model_validate_json(f.read())
        except (OSError, UnicodeDecodeError, pydantic.ValidationError) as e:
            log.warning("manifest.unreadable", path=path, error=str(e))
            if self.reporter is not None:
                self.reporter.warn(f"Failed to parse backup manifest {path}: {e}")
            return None

    def cleanup_backups(self, backup_dir: str, manifest: BackupManifest) -> list[str]:
        """Delete the manifest's backup files, the manifest, then the dir if empty.

        Best effort: every failure is collected and returned.
        """
        errors: list[str] = []
        for entry in manifest.backups:
            path = os.path.join(backup_dir, entry.backup_file_name)
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError as e:
                errors.append(f"{entry.backup_file_name}: {e}")
        try:
            if os.path.exists(self.manifest_path(backup_dir)):
                os.remove(self.manifest_path(backup_dir))
        except OSError as e:
            errors.append(f"{MANIFEST_FILE_NAME}: {e}")
        try:
            if os.path.isdir(backup_dir) and not os.listdir(backup_dir):
                os.rmdir(backup_dir)
        except OSError as e:
            errors.append(f"{backup_dir}: {e}")
        for err in errors:
            log.warning("backup.cleanup_failed", error=err)
        return errors

    # ── rollback ──

    def rollback(self, backup_dir: str, manifest: BackupManifest) -> RollbackReport:
        """Restore every entry; clean up only if all of them came back.

        When any restore fails, the props file and every backup stay where
        they are so a manual recovery remains possible.
        """
        report = RollbackReport()
        for entry in manifest.backups:
            try:
                self.restore_file(backup_dir, entry)
                report.restored += 1
            except FileOperationError as e:
                report.failed += 1
                report.errors.append(f"{entry.original_path}: {e}")
                log.error("rollback.restore_failed", file=entry.original_path, error=str(e))

        if not report.success:
            return report

        if not manifest.props_file_existed and os.path.exists(manifest.props_file_path):
            try:
                os.remove(manifest.props_file_path)
                report.props_deleted = True
            except OSError as e:
                report.cleanup_errors.append(f"{manifest.props_file_path}: {e}")
        report.cleanup_errors.extend(self.cleanup_backups(backup_dir, manifest))
        log.info("rollback.completed", restored=report.restored, props_deleted=report.props_deleted)
        return report

    # ── retention ──

    def get_backup_history(self, backup_dir: str) -> list[BackupSetInfo]:
        """Backup sets grouped by timestamp, newest first."""
        if not os.path.isdir(backup_dir):
            return []
        sets: dict[str, BackupSetInfo] = {}
        for entry in sorted(os.listdir(backup_dir)):
            m = _BACKUP_FILE_RE.match(entry)
            if not m:
                continue
            path = os.path.join(backup_dir, entry)
            info = sets.setdefault(m.group("ts"), BackupSetInfo(timestamp=m.group("ts")))
            info.files.append(
                BackupFile(path=path, original_name=m.group("name"), size=os.path.getsize(path))
            )
        return sorted(sets.values(), key=_set_sort_key, reverse=True)

    def prune_backups(self, backup_dir: str, keep: int) -> PruneResult:
        """Remove backup sets beyond the newest ``keep``."""
        history = self.get_backup_history(backup_dir)
        result = PruneResult(kept_count=min(keep, len(history)))
        doomed = history[keep:]
        self._remove_sets(backup_dir, doomed, result)
        return result

    def prune_all_backups(self, backup_dir: str) -> PruneResult:
        result = PruneResult()
        self._remove_sets(backup_dir, self.get_backup_history(backup_dir), result)
        manifest = self.manifest_path(backup_dir)
        try:
            if os.path.exists(manifest):
                os.remove(manifest)
            if os.path.isdir(backup_dir) and not os.listdir(backup_dir):
                os.rmdir(backup_dir)
        except OSError as e:
            result.errors.append(str(e))
        return result

    def _remove_sets(
        self, backup_dir: str, sets: list[BackupSetInfo], result: PruneResult
    ) -> None:
        if not sets:
            return
        manifest = self.read_manifest(backup_dir)
        for backup_set in sets:
            removed_all = True
            for f in backup_set.files:
                try:
                    os.remove(f.path)
                    result.files_removed += 1
                    result.bytes_freed += f.size
                except OSError as e:
                    removed_all = False
                    result.errors.append(f"{f.path}: {e}")
            if removed_all:
                result.backups_removed += 1
            log.info("backup.pruned", timestamp=backup_set.timestamp, files=backup_set.file_count)
            # The manifest cannot roll back a set whose files are gone.
            if manifest is not None and manifest.timestamp == backup_set.timestamp:
                try:
                    os.remove(self.manifest_path(backup_dir))
                except OSError as e:
                    result.errors.append(f"{MANIFEST_FILE_NAME}: {e}")

    # ── .gitignore ──

    def manage_gitignore(self, options: MigrationOptions, backup_dir: str) -> bool:
        """Add the backup directory to ``.gitignore``; return whether the file changed."""
        if not options.add_gitignore or options.no_backup or not backup_dir:
            return False
        gitignore = os.path.join(os.path.abspath(options.gitignore_dir or "."), ".gitignore")
        dir_name = os.path.basename(backup_dir.rstrip("/\\"))
        entry = f"{dir_name}/"
        try:
            if os.path.isfile(gitignore):
                with open(gitignore, encoding="utf-8") as f:
                    content = f.read()
                if any(line.strip() in (dir_name, entry) for line in content.splitlines()):
                    return False
                prefix = "" if content.endswith("\n") or not content else "\n"
                with open(gitignore, "a", encoding="utf-8") as f:
                    f.write(f"{prefix}\n{GITIGNORE_COMMENT}\n{entry}\n")
            else:
                with open(gitignore, "w", encoding="utf-8") as f:
                    f.write(f"{GITIGNORE_COMMENT}\n{entry}\n")
        except OSError as e:
            raise FileOperationError(f"Cannot update '{gitignore}': {e}") from e
        log.debug("gitignore.updated", path=gitignore, entry=entry)
        return True


def _set_sort_key(info: BackupSetInfo) -> tuple:
    parsed = info.parsed_timestamp
    return (parsed or datetime.min.replace(tzinfo=timezone.utc), info.timestamp)

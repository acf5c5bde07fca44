"""Custom exceptions for cpm-migrate."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cpm_migrate.models.backup import BackupManifest


class MigrationError(Exception):
    """Base exception for all migration errors."""


class ValidationError(MigrationError):
    """Raised when options are invalid or the tree is not in a migratable state."""

    def __init__(self, message: str, remediation: str | None = None):
        self.remediation = remediation
        super().__init__(message)


class FileOperationError(MigrationError):
    """Raised when a read, write, copy or delete fails."""


class VersionConflictError(MigrationError):
    """Raised when conflicting versions cannot be resolved under the chosen strategy."""

    def __init__(self, packages: list[str]):
        self.packages = packages
        super().__init__(
            f"Version conflicts detected for {len(packages)} package(s): {', '.join(packages)}"
        )


class RecoverableMigrationError(MigrationError):
    """A failure after backups were taken; carries what a rollback needs."""

    def __init__(
        self,
        cause: BaseException,
        backup_path: str,
        manifest: BackupManifest | None = None,
    ):
        self.cause = cause
        self.backup_path = backup_path
        self.manifest = manifest
        super().__init__(f"Migration failed after backups were created: {cause}")

    @property
    def can_auto_rollback(self) -> bool:
        return bool(self.backup_path) and self.manifest is not None and bool(self.manifest.backups)


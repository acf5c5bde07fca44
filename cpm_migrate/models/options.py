"""Options for a single run (and the batch flags layered on top)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from cpm_migrate.exceptions import ValidationError


class ConflictStrategy(str, Enum):
    HIGHEST = "highest"
    LOWEST = "lowest"
    FAIL = "fail"
    INTERACTIVE = "interactive"


class OutputFormat(str, Enum):
    TERMINAL = "terminal"
    JSON = "json"


@dataclass
class MigrationOptions:
    solution_dir: str = "."
    project_dir: str = ""
    output_dir: str = "."
    keep_attributes: bool = False
    no_backup: bool = False
    backup_dir: str = "."
    add_gitignore: bool = False
    gitignore_dir: str = "."
    dry_run: bool = False
    conflict_strategy: ConflictStrategy = ConflictStrategy.HIGHEST
    merge_existing: bool = False
    include_transitive: bool = False
    scan_timeout: float = 120.0
    interactive: bool = False
    quiet: bool = False
    output_format: OutputFormat = OutputFormat.TERMINAL
    output_file: str | None = None

    # modes
    rollback: bool = False
    analyze: bool = False
    list_backups: bool = False
    prune_backups: bool = False
    prune_all: bool = False
    retention: int | None = None

    # batch
    batch_dir: str | None = None
    batch_parallel: bool = False
    batch_continue: bool = False
    max_parallelism: int | None = None
    exclude_dirs: list[str] = field(default_factory=list)

    @property
    def mode(self) -> str:
        if self.rollback:
            return "rollback"
        if self.analyze:
            return "analyze"
        if self.list_backups:
            return "list-backups"
        if self.prune_all:
            return "prune-all"
        if self.prune_backups:
            return "prune"
        return "migrate"

    @property
    def backups_enabled(self) -> bool:
        return not self.no_backup

    def validate(self) -> None:
        """Reject contradictory option combinations before any I/O happens."""
        modes = [self.rollback, self.analyze, self.list_backups, self.prune_backups, self.prune_all]
        if sum(modes) > 1:
            raise ValidationError(
                "Only one of rollback, analyze, list-backups, prune and prune-all may be used at a time."
            )
        if self.analyze and self.dry_run:
            raise ValidationError("Analyze mode is read-only; --dry-run has no meaning with it.")
        if self.rollback and self.dry_run:
            raise ValidationError("Rollback cannot be combined with --dry-run.")
        if self.rollback and not self.backup_dir:
            raise ValidationError(
                "Rollback needs the backup directory.", remediation="Pass --backup-dir <dir>."
            )
        if self.no_backup and self.add_gitignore:
            raise ValidationError("--add-gitignore has nothing to ignore when --no-backup is set.")
        if self.backups_enabled and not self.backup_dir:
            raise ValidationError("A backup directory is required when backups are enabled.")
        if self.add_gitignore and not self.gitignore_dir:
            raise ValidationError("--gitignore-dir is required with --add-gitignore.")
        if self.prune_backups and (self.retention is None or self.retention < 1):
            raise ValidationError(
                "Prune needs the number of backup sets to keep.", remediation="Pass --keep N (N >= 1)."
            )
        if self.retention is not None and self.retention < 1:
            raise ValidationError("Retention must keep at least one backup set.")
        if self.scan_timeout <= 0:
            raise ValidationError("The transitive scan timeout must be positive.")
        if self.batch_dir is not None:
            if self.rollback:
                raise ValidationError("Rollback is not supported in batch mode; run it per solution.")
            if self.conflict_strategy == ConflictStrategy.INTERACTIVE:
                raise ValidationError(
                    "Interactive conflict resolution is not available in batch mode.",
                    remediation="Use --conflict-strategy highest, lowest or fail.",
                )
            if self.project_dir:
                raise ValidationError("--project cannot be combined with batch mode.")
        if self.conflict_strategy == ConflictStrategy.INTERACTIVE and not self.interactive:
            raise ValidationError(
                "The interactive conflict strategy needs an interactive terminal.",
                remediation="Use --interactive or pick another --conflict-strategy.",
            )

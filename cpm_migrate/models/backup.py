"""Backup manifest and backup-set models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_TIMESTAMP_FORMATS = ("%Y%m%d%H%M%S", "%Y%m%d%H%M%SZ")


class BackupEntry(BaseModel):
    """One backed-up file: where it came from and what the copy is called."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    original_path: str
    backup_file_name: str


class BackupManifest(BaseModel):
    """Everything needed to undo one migration run.

    Serialized as ``backup_manifest.json`` inside the backup directory with
    camelCase keys.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: str
    props_file_path: str
    props_file_existed: bool
    backups: list[BackupEntry] = []


def parse_backup_timestamp(timestamp: str) -> datetime | None:
    """Parse ``YYYYmmddHHMMSSfff`` (current) or ``YYYYmmddHHMMSSZ`` (legacy)."""
    if len(timestamp) == 17 and timestamp.isdigit():
        try:
            base = datetime.strptime(timestamp[:14], _TIMESTAMP_FORMATS[0])
        except ValueError:
            return None
        return base.replace(microsecond=int(timestamp[14:]) * 1000, tzinfo=timezone.utc)
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(timestamp, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


@dataclass
class BackupFile:
    path: str
    original_name: str
    size: int


@dataclass
class BackupSetInfo:
    """Backup files sharing one timestamp, i.e. one migration run."""

    timestamp: str
    files: list[BackupFile] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def parsed_timestamp(self) -> datetime | None:
        return parse_backup_timestamp(self.timestamp)


@dataclass
class PruneResult:
    kept_count: int = 0
    backups_removed: int = 0
    files_removed: int = 0
    bytes_freed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def bytes_freed_formatted(self) -> str:
        return format_size(self.bytes_freed)


@dataclass
class RollbackReport:
    """Outcome of a rollback transaction."""

    restored: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    props_deleted: bool = False
    cleanup_errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


def format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"

"""Data models shared across the migration engine."""

from cpm_migrate.models.backup import (
    BackupEntry,
    BackupManifest,
    BackupSetInfo,
    PruneResult,
    RollbackReport,
)
from cpm_migrate.models.options import ConflictStrategy, MigrationOptions, OutputFormat
from cpm_migrate.models.package import PackageReference, VersionMap, add_version
from cpm_migrate.models.result import (
    AnalysisIssue,
    AnalysisReport,
    AnalyzerResult,
    BatchResult,
    ConflictInfo,
    ExitCode,
    MigrationResult,
    UnitResult,
)

__all__ = [
    "AnalysisIssue",
    "AnalysisReport",
    "AnalyzerResult",
    "BackupEntry",
    "BackupManifest",
    "BackupSetInfo",
    "BatchResult",
    "ConflictInfo",
    "ConflictStrategy",
    "ExitCode",
    "MigrationOptions",
    "MigrationResult",
    "OutputFormat",
    "PackageReference",
    "PruneResult",
    "RollbackReport",
    "UnitResult",
    "VersionMap",
    "add_version",
]

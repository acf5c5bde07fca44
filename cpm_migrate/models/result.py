"""Run results, exit codes and analysis findings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    SUCCESS = 0
    VALIDATION_ERROR = 1
    FILE_OPERATION_ERROR = 2
    VERSION_CONFLICT = 3
    NO_PROJECTS_FOUND = 4
    ANALYSIS_ISSUES_FOUND = 5
    UNEXPECTED_ERROR = 6


@dataclass
class ConflictInfo:
    """A package requested at more than one version."""

    package: str
    # version -> names of the projects requesting it
    versions: dict[str, list[str]]
    resolved: str | None = None
    resolution: str | None = None
    overridden: bool = False


@dataclass
class AnalysisIssue:
    package: str
    description: str
    projects: list[str] = field(default_factory=list)
    versions: list[str] = field(default_factory=list)
    recommendation: str | None = None


@dataclass
class AnalyzerResult:
    analyzer: str
    issues: list[AnalysisIssue] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)


@dataclass
class AnalysisReport:
    projects_scanned: int = 0
    results: list[AnalyzerResult] = field(default_factory=list)

    @property
    def total_issues(self) -> int:
        return sum(len(r.issues) for r in self.results)

    @property
    def has_issues(self) -> bool:
        return self.total_issues > 0


@dataclass
class MigrationResult:
    """Summary of one run against one tree. ``exit_code`` is authoritative."""

    exit_code: ExitCode = ExitCode.SUCCESS
    operation: str = "migrate"
    projects_processed: int = 0
    packages_found: int = 0
    conflicts_resolved: int = 0
    props_file_path: str | None = None
    backup_path: str | None = None
    was_dry_run: bool = False
    conflicts: list[ConflictInfo] = field(default_factory=list)
    analysis: AnalysisReport | None = None
    # project name -> direct references already satisfied transitively
    redundant_references: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    rolled_back: bool = False
    # one record per phase, in the order the phases ran
    phases: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS


@dataclass
class UnitResult:
    """One solution's outcome inside a batch."""

    path: str
    name: str
    exit_code: ExitCode
    projects_processed: int = 0
    packages_found: int = 0
    conflicts_resolved: int = 0
    props_file_path: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    @classmethod
    def from_result(cls, path: str, name: str, result: MigrationResult) -> UnitResult:
        return cls(
            path=path,
            name=name,
            exit_code=result.exit_code,
            projects_processed=result.projects_processed,
            packages_found=result.packages_found,
            conflicts_resolved=result.conflicts_resolved,
            props_file_path=result.props_file_path,
            error=result.errors[0] if result.errors else None,
        )


@dataclass
class BatchResult:
    operation: str = "migrate"
    units: list[UnitResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return bool(self.units) and all(u.success for u in self.units)

    @property
    def succeeded(self) -> int:
        return sum(1 for u in self.units if u.success)

    @property
    def failed(self) -> int:
        return len(self.units) - self.succeeded

    @property
    def totals(self) -> dict[str, int]:
        return {
            "projects_processed": sum(u.projects_processed for u in self.units),
            "packages_found": sum(u.packages_found for u in self.units),
            "conflicts_resolved": sum(u.conflicts_resolved for u in self.units),
        }

    @property
    def exit_code(self) -> ExitCode:
        if not self.units:
            return ExitCode.NO_PROJECTS_FOUND
        if self.success:
            return ExitCode.SUCCESS
        if any(u.exit_code == ExitCode.VERSION_CONFLICT for u in self.units):
            return ExitCode.VERSION_CONFLICT
        return ExitCode.FILE_OPERATION_ERROR

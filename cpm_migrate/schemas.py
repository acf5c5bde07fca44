"""JSON output schemas for ``--output json``."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from cpm_migrate.models.result import BatchResult, MigrationResult


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConflictSchema(_Schema):
    package: str
    versions: dict[str, list[str]]
    resolved: str | None = None
    resolution: str | None = None


class IssueSchema(_Schema):
    package: str
    description: str
    projects: list[str] = []
    versions: list[str] = []
    recommendation: str | None = None


class AnalyzerSchema(_Schema):
    analyzer: str
    issues: list[IssueSchema]


class AnalysisSchema(_Schema):
    projects_scanned: int
    total_issues: int
    analyzers: list[AnalyzerSchema]


class PhaseSchema(_Schema):
    phase: str
    status: str
    duration: float | None = None
    detail: str = ""
    error: str | None = None


class OperationResultSchema(_Schema):
    success: bool
    exit_code: int
    operation: str
    dry_run: bool
    projects_processed: int
    packages_found: int
    conflicts_resolved: int
    props_file: str | None = None
    backup_path: str | None = None
    rolled_back: bool = False
    conflicts: list[ConflictSchema] = []
    redundant_references: dict[str, list[str]] = {}
    analysis: AnalysisSchema | None = None
    warnings: list[str] = []
    errors: list[str] = []
    phases: list[PhaseSchema] = []

    @classmethod
    def from_result(cls, result: MigrationResult) -> OperationResultSchema:
        analysis = None
        if result.analysis is not None:
            analysis = AnalysisSchema(
                projects_scanned=result.analysis.projects_scanned,
                total_issues=result.analysis.total_issues,
                analyzers=[
                    AnalyzerSchema(
                        analyzer=r.analyzer,
                        issues=[
                            IssueSchema(
                                package=i.package,
                                description=i.description,
                                projects=i.projects,
                                versions=i.versions,
                                recommendation=i.recommendation,
                            )
                            for i in r.issues
                        ],
                    )
                    for r in result.analysis.results
                ],
            )
        return cls(
            success=result.success,
            exit_code=int(result.exit_code),
            operation=result.operation,
            dry_run=result.was_dry_run,
            projects_processed=result.projects_processed,
            packages_found=result.packages_found,
            conflicts_resolved=result.conflicts_resolved,
            props_file=result.props_file_path,
            backup_path=result.backup_path,
            rolled_back=result.rolled_back,
            conflicts=[
                ConflictSchema(
                    package=c.package, versions=c.versions, resolved=c.resolved, resolution=c.resolution
                )
                for c in result.conflicts
            ],
            redundant_references=result.redundant_references,
            analysis=analysis,
            warnings=result.warnings,
            errors=result.errors,
            phases=[PhaseSchema.model_validate(p) for p in result.phases],
        )


class UnitSchema(_Schema):
    path: str
    name: str
    success: bool
    exit_code: int
    projects_processed: int
    packages_found: int
    conflicts_resolved: int
    props_file: str | None = None
    error: str | None = None


class BatchResultSchema(_Schema):
    success: bool
    exit_code: int
    operation: str
    dry_run: bool
    total_solutions: int
    succeeded: int
    failed: int
    total_projects: int
    total_packages: int
    total_conflicts: int
    solutions: list[UnitSchema]
    errors: list[str] = []

    @classmethod
    def from_result(cls, result: BatchResult) -> BatchResultSchema:
        totals = result.totals
        return cls(
            success=result.success,
            exit_code=int(result.exit_code),
            operation=result.operation,
            dry_run=result.dry_run,
            total_solutions=len(result.units),
            succeeded=result.succeeded,
            failed=result.failed,
            total_projects=totals["projects_processed"],
            total_packages=totals["packages_found"],
            total_conflicts=totals["conflicts_resolved"],
            solutions=[
                UnitSchema(
                    path=u.path,
                    name=u.name,
                    success=u.success,
                    exit_code=int(u.exit_code),
                    projects_processed=u.projects_processed,
                    packages_found=u.packages_found,
                    conflicts_resolved=u.conflicts_resolved,
                    props_file=u.props_file_path,
                    error=u.error,
                )
                for u in result.units
            ],
            errors=result.errors,
        )


def to_json(result: MigrationResult | BatchResult) -> str:
    """Serialize a run or batch result; ``None`` fields are dropped."""
    if isinstance(result, BatchResult):
        schema: _Schema = BatchResultSchema.from_result(result)
    else:
        schema = OperationResultSchema.from_result(result)
    return schema.model_dump_json(by_alias=True, exclude_none=True, indent=2)

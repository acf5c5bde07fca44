"""Read-only analyzers run in analyze mode."""

from __future__ import annotations

from collections import defaultdict
from typing import Protocol, runtime_checkable

from cpm_migrate.dependency_graph import DependencyGraphService
from cpm_migrate.models.package import PackageReference
from cpm_migrate.models.result import AnalysisIssue, AnalysisReport, AnalyzerResult


@runtime_checkable
class Analyzer(Protocol):
    """Interface every analyzer must satisfy."""

    name: str

    def analyze(self, references: list[PackageReference]) -> AnalyzerResult: ...


def _unique(items) -> list[str]:
    return list(dict.fromkeys(items))


class VersionInconsistencyAnalyzer:
    name = "Version Inconsistencies"

    def analyze(self, references: list[PackageReference]) -> AnalyzerResult:
        by_package: dict[str, list[PackageReference]] = defaultdict(list)
        for ref in references:
            if not ref.is_transitive:
                by_package[ref.package_name].append(ref)
        issues = []
        for package in sorted(by_package):
            refs = by_package[package]
            versions = sorted({r.version for r in refs})
            if len(versions) > 1:
                issues.append(
                    AnalysisIssue(
                        package=package,
                        description=f"Referenced at {len(versions)} versions: {', '.join(versions)}",
                        projects=_unique(r.project_name for r in refs),
                        versions=versions,
                        recommendation="Pick one version; migration resolves it with --conflict-strategy.",
                    )
                )
        return AnalyzerResult(self.name, issues)


class DuplicateCasingAnalyzer:
    """Same package spelled with different casing (``Newtonsoft.Json`` vs ``newtonsoft.json``)."""

    name = "Duplicate Packages (Casing)"

    def analyze(self, references: list[PackageReference]) -> AnalyzerResult:
        groups: dict[str, list[PackageReference]] = defaultdict(list)
        for ref in references:
            if not ref.is_transitive:
                groups[ref.package_name.lower()].append(ref)
        issues = []
        for key in sorted(groups):
            variations = _unique(r.package_name for r in groups[key])
            if len(variations) < 2:
                continue
            issues.append(
                AnalysisIssue(
                    package=variations[0],
                    description=f"Found {len(variations)} casing variations: {', '.join(variations)}",
                    projects=_unique(r.project_name for r in groups[key]),
                    recommendation="Use one spelling; each spelling becomes its own manifest entry.",
                )
            )
        return AnalyzerResult(self.name, issues)


class RedundantReferenceAnalyzer:
    """The same package referenced more than once inside one project."""

    name = "Redundant References"

    def analyze(self, references: list[PackageReference]) -> AnalyzerResult:
        per_project: dict[tuple[str, str], list[PackageReference]] = defaultdict(list)
        for ref in references:
            if not ref.is_transitive:
                per_project[(ref.project_path, ref.package_name.lower())].append(ref)
        issues = []
        for refs in per_project.values():
            if len(refs) < 2:
                continue
            versions = _unique(r.version for r in refs)
            if len(versions) == 1:
                description = f"Referenced {len(refs)} times with version {versions[0]}"
            else:
                description = f"Referenced {len(refs)} times with versions: {', '.join(versions)}"
            issues.append(
                AnalysisIssue(
                    package=refs[0].package_name,
                    description=description,
                    projects=[refs[0].project_name],
                    versions=versions,
                )
            )
        return AnalyzerResult(self.name, issues)


class TransitiveConflictAnalyzer:
    name = "Transitive Conflicts"

    def analyze(self, references: list[PackageReference]) -> AnalyzerResult:
        groups: dict[str, list[PackageReference]] = defaultdict(list)
        for ref in references:
            if ref.is_transitive:
                groups[ref.package_name.lower()].append(ref)
        issues = []
        for key in sorted(groups):
            refs = groups[key]
            versions = sorted({r.version for r in refs})
            if len(versions) < 2:
                continue
            project_count = len({r.project_path for r in refs})
            issues.append(
                AnalysisIssue(
                    package=refs[0].package_name,
                    description=(
                        f"Transitive dependency has {len(versions)} different versions across "
                        f"{project_count} projects: {', '.join(versions)}"
                    ),
                    projects=_unique(r.project_name for r in refs),
                    versions=versions,
                    recommendation="Pin this package in Directory.Packages.props.",
                )
            )
        return AnalyzerResult(self.name, issues)


class LiftingAnalyzer:
    """Direct references already provided by another top-level package."""

    name = "Redundant Direct References (Lifting)"

    def __init__(self, graph_service: DependencyGraphService):
        self.graph_service = graph_service

    def analyze(self, references: list[PackageReference]) -> AnalyzerResult:
        issues = []
        seen: set[str] = set()
        for ref in references:
            if ref.is_transitive or ref.project_path in seen:
                continue
            seen.add(ref.project_path)
            for package in self.graph_service.identify_redundant_direct_references(ref.project_path):
                issues.append(
                    AnalysisIssue(
                        package=package,
                        description=(
                            "Direct reference is redundant; another top-level package in "
                            f"{ref.project_name} already brings it in."
                        ),
                        projects=[ref.project_name],
                        recommendation="Remove the direct PackageReference.",
                    )
                )
        return AnalyzerResult(self.name, issues)


def default_analyzers(graph_service: DependencyGraphService) -> list[Analyzer]:
    return [
        VersionInconsistencyAnalyzer(),
        DuplicateCasingAnalyzer(),
        RedundantReferenceAnalyzer(),
        TransitiveConflictAnalyzer(),
        LiftingAnalyzer(graph_service),
    ]


def run_analyzers(
    references: list[PackageReference],
    analyzers: list[Analyzer],
    projects_scanned: int,
) -> AnalysisReport:
    report = AnalysisReport(projects_scanned=projects_scanned)
    for analyzer in analyzers:
        report.results.append(analyzer.analyze(references))
    return report

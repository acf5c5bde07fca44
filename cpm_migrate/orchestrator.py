"""Migration orchestrator: one run against one solution tree.

Modes:
    rollback      restore a previous run from its backup manifest
    analyze       read-only analyzers over the discovered projects
    list-backups  backup history table
    prune         keep the newest N backup sets
    prune-all     drop every backup set
    migrate       discover → scan → conflicts → backup → transform
                  → manifest → .gitignore → summary
"""

from __future__ import annotations

import os
from collections import defaultdict
from dataclasses import dataclass, field

import structlog

from cpm_migrate.analysis import TransitiveConflictAnalyzer, default_analyzers, run_analyzers
from cpm_migrate.backup_manager import BackupManager, new_timestamp
from cpm_migrate.dependency_graph import DependencyGraphService
from cpm_migrate.discovery import discover_from_project_path, discover_from_solution_root
from cpm_migrate.exceptions import (
    FileOperationError,
    MigrationError,
    RecoverableMigrationError,
    ValidationError,
    VersionConflictError,
)
from cpm_migrate.models.backup import BackupEntry, BackupManifest, format_size
from cpm_migrate.models.options import ConflictStrategy, MigrationOptions
from cpm_migrate.models.package import PackageReference, VersionMap, add_version
from cpm_migrate.models.result import ConflictInfo, ExitCode, MigrationResult
from cpm_migrate.progress import PHASES, ProgressTracker
from cpm_migrate.props import (
    PROPS_FILE_NAME,
    merge_into_existing,
    read_existing_versions,
    render_manifest,
)
from cpm_migrate.reporting.base import Reporter, ResolutionAction
from cpm_migrate.scanner.project_file import ProjectFileScanner, project_name
from cpm_migrate.scanner.transitive import TransitiveScanner
from cpm_migrate.version_resolver import VersionResolver

log = structlog.get_logger(__name__)

EXISTING_PROPS_LABEL = PROPS_FILE_NAME


def classify_exception(exc: BaseException) -> ExitCode:
    """Map an exception to the exit code the process reports."""
    if isinstance(exc, RecoverableMigrationError):
        return classify_exception(exc.cause)
    if isinstance(exc, ValidationError):
        return ExitCode.VALIDATION_ERROR
    if isinstance(exc, VersionConflictError):
        return ExitCode.VERSION_CONFLICT
    if isinstance(exc, (FileOperationError, OSError)):
        return ExitCode.FILE_OPERATION_ERROR
    return ExitCode.UNEXPECTED_ERROR


def rollback_command(backup_dir: str) -> str:
    """Remediation command for a backup directory (the ``.cpm_backup`` folder)."""
    return f"cpm-migrate rollback --backup-dir {os.path.dirname(backup_dir.rstrip(os.sep))}"


@dataclass
class _RunState:
    """Mutable state of the write phase; grows as files are backed up."""

    props_path: str
    props_existed: bool
    backup_dir: str = ""
    timestamp: str = ""
    entries: list[BackupEntry] = field(default_factory=list)

    def manifest(self) -> BackupManifest:
        return BackupManifest(
            timestamp=self.timestamp,
            props_file_path=self.props_path,
            props_file_existed=self.props_existed,
            backups=list(self.entries),
        )


@dataclass
class _ScanOutcome:
    projects: list[str]
    references: list[PackageReference]
    version_map: VersionMap


class MigrationOrchestrator:
    """Runs one mode end to end and reports through the injected reporter."""

    def __init__(
        self,
        reporter: Reporter,
        resolver: VersionResolver | None = None,
        scanner: ProjectFileScanner | None = None,
        backup_manager: BackupManager | None = None,
        graph_service: DependencyGraphService | None = None,
        transitive_scanner: TransitiveScanner | None = None,
        progress: ProgressTracker | None = None,
    ) -> None:
        self.reporter = reporter
        self.resolver = resolver or VersionResolver(reporter)
        self.scanner = scanner or ProjectFileScanner(reporter)
        self.backup_manager = backup_manager or BackupManager(reporter)
        self.graph_service = graph_service or DependencyGraphService(reporter)
        self.transitive_scanner = transitive_scanner
        self.progress = progress or ProgressTracker()

    async def execute(self, options: MigrationOptions) -> MigrationResult:
        """Run the mode selected by ``options``. Expected failures never raise."""
        result = MigrationResult(operation=options.mode, was_dry_run=options.dry_run)
        handlers = {
            "rollback": self._rollback,
            "analyze": self._analyze,
            "list-backups": self._list_backups,
            "prune": self._prune,
            "prune-all": self._prune_all,
            "migrate": self._migrate,
        }
        self.progress.reset()
        structlog.contextvars.bind_contextvars(mode=options.mode)
        try:
            options.validate()
            await handlers[options.mode](options, result)
        except RecoverableMigrationError as e:
            self._recover(e, options, result)
        except MigrationError as e:
            self._fail(result, e)
        except OSError as e:
            log.error("run.io_error", error=str(e), exc_info=True)
            self._fail(result, e)
        except Exception as e:
            log.error("run.unexpected_error", error=str(e), exc_info=True)
            self._fail(result, e)
        finally:
            if self.progress.current is not None:
                self.progress.fail(self.progress.current.phase, "; ".join(result.errors) or "aborted")
            result.phases = self.progress.summary()["phases"]
            structlog.contextvars.unbind_contextvars("mode")
        return result

    def _fail(self, result: MigrationResult, exc: BaseException) -> None:
        result.exit_code = classify_exception(exc)
        result.errors.append(str(exc))
        self.reporter.error(str(exc))
        remediation = getattr(exc, "remediation", None)
        if remediation:
            self.reporter.info(remediation)

    # ── migrate ──

    async def _migrate(self, options: MigrationOptions, result: MigrationResult) -> None:
        self.progress.start("discover")
        base, projects = self._discover(options)
        if not projects:
            self.progress.fail("discover", "no projects")
            result.exit_code = ExitCode.NO_PROJECTS_FOUND
            result.errors.append("No projects found.")
            self.reporter.error("No projects found to migrate.")
            return
        self.progress.complete("discover", f"{len(projects)} project(s)")

        props_path = os.path.join(os.path.abspath(options.output_dir or base), PROPS_FILE_NAME)
        props_existed = os.path.isfile(props_path)
        if props_existed and not options.merge_existing:
            raise ValidationError(
                f"{props_path} already exists.",
                remediation="Re-run with --merge to merge into the existing file.",
            )
        if options.backups_enabled and not options.dry_run:
            previous = self.backup_manager.read_manifest(self.backup_manager.get_backup_directory_path(options))
            if previous is not None:
                self._warn(
                    result,
                    f"Superseding the backup manifest from {previous.timestamp}; "
                    "its backup files stay on disk until pruned.",
                )

        self.progress.start("scan")
        scan = self._scan(projects)
        if props_existed:
            existing, conditional = read_existing_versions(props_path)
            for name, versions in existing.items():
                for version in versions:
                    add_version(scan.version_map, name, version)
            if conditional:
                self._warn(result, f"{PROPS_FILE_NAME} has conditional PackageVersion entries; review them after merging.")
        result.packages_found = len(scan.version_map)
        self.progress.complete("scan", f"{result.packages_found} package(s)")

        self.progress.start("conflicts")
        result.conflicts = self._conflicts(scan, props_existed)
        overrides = self._resolve_conflicts(result.conflicts, options.conflict_strategy)
        result.conflicts_resolved = len(result.conflicts)
        self.progress.complete("conflicts", f"{len(result.conflicts)} conflict(s)")

        result.props_file_path = props_path
        if options.dry_run:
            await self._dry_run(options, scan, props_path, props_existed, overrides, result)
            for phase in PHASES[PHASES.index("backup") :]:
                self.progress.skip(phase, "dry run")
            return

        state = _RunState(props_path=props_path, props_existed=props_existed)
        try:
            await self._write(options, scan, state, overrides, result)
        except Exception as e:
            if not state.entries:
                raise
            manifest = state.manifest()
            try:
                self.backup_manager.write_manifest(state.backup_dir, manifest)
            except FileOperationError:
                log.error("manifest.partial_write_failed", backup_dir=state.backup_dir, exc_info=True)
            raise RecoverableMigrationError(e, state.backup_dir, manifest) from e

        if options.retention and state.backup_dir:
            pruned = self.backup_manager.prune_backups(state.backup_dir, options.retention)
            for err in pruned.errors:
                self._warn(result, f"Backup retention: {err}")

        result.projects_processed = len(scan.projects)
        result.backup_path = state.backup_dir or None
        self.reporter.success(
            f"Migrated {result.projects_processed} project(s): {result.packages_found} package(s) "
            f"centralized in {props_path}."
        )
        if state.backup_dir:
            self.reporter.dim(f"Backups: {state.backup_dir}")

    def _discover(self, options: MigrationOptions) -> tuple[str, list[str]]:
        if options.project_dir:
            return discover_from_project_path(options.project_dir, self.reporter)
        return discover_from_solution_root(options.solution_dir, self.reporter)

    def _scan(self, projects: list[str]) -> _ScanOutcome:
        outcome = _ScanOutcome(projects=[], references=[], version_map={})
        for project in projects:
            refs, ok = self.scanner.scan_project(project)
            if not ok:
                continue
            outcome.projects.append(project)
            outcome.references.extend(refs)
            for ref in refs:
                add_version(outcome.version_map, ref.package_name, ref.version)
        return outcome

    def _conflicts(self, scan: _ScanOutcome, props_existed: bool) -> list[ConflictInfo]:
        names = self.resolver.detect_conflicts(scan.version_map)
        users: dict[tuple[str, str], list[str]] = defaultdict(list)
        for ref in scan.references:
            key = (ref.package_name, ref.version)
            if ref.project_name not in users[key]:
                users[key].append(ref.project_name)
        conflicts = []
        for name in names:
            versions = {}
            for version in sorted(scan.version_map[name]):
                versions[version] = users.get((name, version)) or (
                    [EXISTING_PROPS_LABEL] if props_existed else []
                )
            conflicts.append(ConflictInfo(package=name, versions=versions))
        return conflicts

    def _resolve_conflicts(
        self, conflicts: list[ConflictInfo], strategy: ConflictStrategy
    ) -> dict[str, str]:
        """Fill in each conflict's resolution; return user overrides.

        FAIL and an interactive abort raise VersionConflictError before any write.
        """
        if not conflicts:
            return {}
        if strategy == ConflictStrategy.FAIL:
            self._render_conflicts(conflicts)
            raise VersionConflictError([c.package for c in conflicts])

        overrides: dict[str, str] = {}
        for conflict in conflicts:
            suggested = self.resolver.resolve_version(conflict.versions, strategy)
            conflict.resolved = suggested
            conflict.resolution = strategy.value
            if strategy != ConflictStrategy.INTERACTIVE:
                continue
            choice = self.reporter.choose_resolution(conflict, suggested)
            if choice.action == ResolutionAction.ABORT:
                self.reporter.info("Migration aborted; no files were changed.")
                raise VersionConflictError([c.package for c in conflicts])
            if choice.action == ResolutionAction.USE_VERSION and choice.version:
                overrides[conflict.package] = choice.version
                conflict.resolved = choice.version
                conflict.overridden = choice.version != suggested
                conflict.resolution = "user"
        self._render_conflicts(conflicts)
        return overrides

    def _render_conflicts(self, conflicts: list[ConflictInfo]) -> None:
        rows = [
            [c.package, ", ".join(c.versions), c.resolved or "-"]
            for c in conflicts
        ]
        self.reporter.render_table("Version conflicts", ["Package", "Versions", "Resolved"], rows)

    async def _write(
        self,
        options: MigrationOptions,
        scan: _ScanOutcome,
        state: _RunState,
        overrides: dict[str, str],
        result: MigrationResult,
    ) -> None:
        bm = self.backup_manager
        state.timestamp = new_timestamp()
        if options.backups_enabled:
            self.progress.start("backup")
            state.backup_dir = bm.create_backup_directory(options)
            if state.backup_dir and state.props_existed:
                state.entries.append(bm.create_backup_for_project(state.props_path, state.backup_dir, state.timestamp))
            self.progress.complete("backup", state.backup_dir)
        else:
            self.progress.skip("backup", "disabled")

        self.progress.start("transform")
        # Versions were fixed by the scan; the rewrite pass must not add any.
        stripped: VersionMap = {}
        transitive: list[PackageReference] = []
        for project in scan.projects:
            if state.backup_dir:
                state.entries.append(bm.create_backup_for_project(project, state.backup_dir, state.timestamp))
            text = self.scanner.transform_project(project, stripped, options.keep_attributes)
            _write_text(project, text)
            self.reporter.dim(f"Updated {os.path.basename(project)}")
            if options.include_transitive:
                transitive.extend(await self._inspect_graph(project, options, result))
        self._report_transitive_conflicts(transitive, result)
        self.progress.complete("transform", f"{len(scan.projects)} project(s)")

        self.progress.start("manifest")
        if state.props_existed:
            outcome = merge_into_existing(
                state.props_path, scan.version_map, options.conflict_strategy, self.resolver, overrides
            )
            _write_text(state.props_path, outcome.text)
            self.reporter.info(
                f"Merged into {PROPS_FILE_NAME}: {outcome.added} added, {outcome.updated} updated."
            )
        else:
            text = render_manifest(scan.version_map, options.conflict_strategy, self.resolver, overrides)
            _write_text(state.props_path, text)
        if state.backup_dir:
            bm.write_manifest(state.backup_dir, state.manifest())
        self.progress.complete("manifest", state.props_path)

        if not (options.add_gitignore and state.backup_dir):
            self.progress.skip("gitignore", "not requested")
            return
        self.progress.start("gitignore")
        changed = bm.manage_gitignore(options, state.backup_dir)
        self.progress.complete("gitignore", "updated" if changed else "unchanged")

    async def _inspect_graph(
        self, project: str, options: MigrationOptions, result: MigrationResult
    ) -> list[PackageReference]:
        """Transitive listing plus redundant direct reference detection for one project."""
        scanner = self.transitive_scanner or TransitiveScanner(self.reporter, timeout=options.scan_timeout)
        transitive, _ = await scanner.scan(project)
        redundant = self.graph_service.identify_redundant_direct_references(project)
        if redundant:
            name = project_name(project)
            result.redundant_references[name] = redundant
            self._warn(
                result,
                f"{name}: direct reference(s) already provided transitively: {', '.join(redundant)}",
            )
        return transitive

    def _report_transitive_conflicts(
        self, transitive: list[PackageReference], result: MigrationResult
    ) -> None:
        for issue in TransitiveConflictAnalyzer().analyze(transitive).issues:
            self._warn(result, f"{issue.package}: {issue.description}. {issue.recommendation}")

    async def _dry_run(
        self,
        options: MigrationOptions,
        scan: _ScanOutcome,
        props_path: str,
        props_existed: bool,
        overrides: dict[str, str],
        result: MigrationResult,
    ) -> None:
        self.reporter.info("Dry run: no files will be changed.")
        if options.backups_enabled:
            backup_dir = self.backup_manager.get_backup_directory_path(options)
            count = len(scan.projects) + (1 if props_existed else 0)
            self.reporter.info(f"Would back up {count} file(s) to {backup_dir}.")
        stripped: VersionMap = {}
        transitive: list[PackageReference] = []
        for project in scan.projects:
            original = _read_text(project)
            text = self.scanner.transform_project(project, stripped, options.keep_attributes)
            verb = "Would update" if text != original else "No change to"
            self.reporter.dim(f"{verb} {os.path.basename(project)}")
            if options.include_transitive:
                transitive.extend(await self._inspect_graph(project, options, result))
        self._report_transitive_conflicts(transitive, result)

        if props_existed:
            outcome = merge_into_existing(
                props_path, scan.version_map, options.conflict_strategy, self.resolver, overrides
            )
            self.reporter.info(
                f"Would merge into {PROPS_FILE_NAME}: {outcome.added} added, {outcome.updated} updated."
            )
            text = outcome.text
        else:
            text = render_manifest(scan.version_map, options.conflict_strategy, self.resolver, overrides)
        self.reporter.preview(props_path, text)
        if options.add_gitignore and options.backups_enabled:
            self.reporter.info(f"Would add the backup directory to {os.path.join(options.gitignore_dir, '.gitignore')}.")
        result.projects_processed = len(scan.projects)

    # ── recovery ──

    def _recover(
        self, error: RecoverableMigrationError, options: MigrationOptions, result: MigrationResult
    ) -> None:
        """Offer (interactive) or perform (otherwise) a rollback of this run."""
        cause = error.cause
        log.error("migrate.failed_after_backup", backup_dir=error.backup_path, error=str(cause))
        result.exit_code = classify_exception(error)
        result.errors.append(str(cause))
        result.backup_path = error.backup_path
        self.reporter.error(f"Migration failed: {cause}")

        if error.can_auto_rollback:
            proceed = True
            if options.interactive:
                proceed = self.reporter.confirm("Roll back the changes made so far?", default=True)
            if proceed:
                report = self.backup_manager.rollback(error.backup_path, error.manifest)
                if report.success:
                    result.rolled_back = True
                    self.reporter.success(f"Rolled back {report.restored} file(s).")
                    return
                for err in report.errors:
                    self.reporter.error(err)
        self.reporter.info(f"Restore manually with: {rollback_command(error.backup_path)}")

    # ── rollback ──

    async def _rollback(self, options: MigrationOptions, result: MigrationResult) -> None:
        bm = self.backup_manager
        backup_dir = bm.get_backup_directory_path(options)
        manifest = bm.read_manifest(backup_dir)
        if manifest is None:
            result.exit_code = ExitCode.FILE_OPERATION_ERROR
            result.errors.append(f"No usable backup manifest in {backup_dir}.")
            self.reporter.error(f"No usable backup manifest found in {backup_dir}; nothing was changed.")
            return

        result.backup_path = backup_dir
        rows = [[e.original_path, e.backup_file_name] for e in manifest.backups]
        self.reporter.render_table("Files to restore", ["File", "Backup"], rows)
        props_action = "keep" if manifest.props_file_existed else "delete"
        self.reporter.info(f"{PROPS_FILE_NAME}: {props_action} ({manifest.props_file_path})")
        if options.interactive and not self.reporter.confirm("Proceed with rollback?", default=False):
            self.reporter.info("Rollback cancelled; nothing was changed.")
            return

        report = bm.rollback(backup_dir, manifest)
        result.projects_processed = report.restored
        if not report.success:
            result.exit_code = ExitCode.FILE_OPERATION_ERROR
            result.errors.extend(report.errors)
            for err in report.errors:
                self.reporter.error(err)
            self.reporter.error(
                f"{report.failed} of {len(manifest.backups)} file(s) could not be restored. "
                f"Nothing was deleted; backups remain in {backup_dir} for manual recovery."
            )
            return

        result.rolled_back = True
        for err in report.cleanup_errors:
            self._warn(result, f"Cleanup: {err}")
        self.reporter.success(f"Restored {report.restored} file(s).")
        if report.props_deleted:
            self.reporter.info(f"Removed {manifest.props_file_path}.")

    # ── analyze ──

    async def _analyze(self, options: MigrationOptions, result: MigrationResult) -> None:
        _, projects = self._discover(options)
        if not projects:
            result.exit_code = ExitCode.NO_PROJECTS_FOUND
            result.errors.append("No projects found.")
            self.reporter.error("No projects found to analyze.")
            return

        scan = self._scan(projects)
        references = list(scan.references)
        if options.include_transitive:
            for project in scan.projects:
                scanner = self.transitive_scanner or TransitiveScanner(
                    self.reporter, timeout=options.scan_timeout
                )
                transitive, _ = await scanner.scan(project)
                references.extend(transitive)

        report = run_analyzers(references, default_analyzers(self.graph_service), len(scan.projects))
        result.analysis = report
        result.projects_processed = len(scan.projects)
        result.packages_found = len(scan.version_map)
        for analyzer in report.results:
            if not analyzer.has_issues:
                self.reporter.dim(f"{analyzer.analyzer}: no issues")
                continue
            rows = [[i.package, i.description, ", ".join(i.projects)] for i in analyzer.issues]
            self.reporter.render_table(analyzer.analyzer, ["Package", "Issue", "Projects"], rows)

        if report.has_issues:
            result.exit_code = ExitCode.ANALYSIS_ISSUES_FOUND
            self.reporter.warn(f"{report.total_issues} issue(s) found in {report.projects_scanned} project(s).")
        else:
            self.reporter.success(f"No issues found in {report.projects_scanned} project(s).")

    # ── retention ──

    async def _list_backups(self, options: MigrationOptions, result: MigrationResult) -> None:
        backup_dir = self.backup_manager.get_backup_directory_path(options)
        history = self.backup_manager.get_backup_history(backup_dir)
        result.backup_path = backup_dir
        if not history:
            self.reporter.info(f"No backups found in {backup_dir}.")
            return
        rows = []
        for entry in history:
            when = entry.parsed_timestamp
            rows.append(
                [
                    entry.timestamp,
                    when.strftime("%Y-%m-%d %H:%M:%S UTC") if when else "unknown",
                    str(entry.file_count),
                    format_size(entry.total_size),
                ]
            )
        self.reporter.render_table(
            f"Backups in {backup_dir}", ["Timestamp", "Created", "Files", "Size"], rows
        )

    async def _prune(self, options: MigrationOptions, result: MigrationResult) -> None:
        backup_dir = self.backup_manager.get_backup_directory_path(options)
        pruned = self.backup_manager.prune_backups(backup_dir, options.retention or 1)
        self._report_prune(pruned, result)

    async def _prune_all(self, options: MigrationOptions, result: MigrationResult) -> None:
        backup_dir = self.backup_manager.get_backup_directory_path(options)
        if options.interactive and not self.reporter.confirm(
            f"Delete every backup in {backup_dir}? Rollback will no longer be possible.", default=False
        ):
            self.reporter.info("Prune cancelled.")
            return
        self._report_prune(self.backup_manager.prune_all_backups(backup_dir), result)

    def _report_prune(self, pruned, result: MigrationResult) -> None:
        if not pruned.success:
            result.exit_code = ExitCode.FILE_OPERATION_ERROR
            result.errors.extend(pruned.errors)
            for err in pruned.errors:
                self.reporter.error(err)
        self.reporter.info(
            f"Removed {pruned.backups_removed} backup set(s), {pruned.files_removed} file(s), "
            f"{pruned.bytes_freed_formatted} freed."
        )

    def _warn(self, result: MigrationResult, message: str) -> None:
        result.warnings.append(message)
        self.reporter.warn(message)


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8-sig", newline="") as f:
        return f.read()


def _write_text(path: str, text: str) -> None:
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(text)
    except OSError as e:
        raise FileOperationError(f"Cannot write '{path}': {e}") from e

"""Batch mode: run the migration unit over every solution below a root."""

from __future__ import annotations

import asyncio
import dataclasses
import os
from typing import Awaitable, Callable

import structlog

from cpm_migrate.discovery import DEFAULT_EXCLUDED_DIRECTORIES, discover_solutions
from cpm_migrate.models.options import MigrationOptions
from cpm_migrate.models.result import BatchResult, ExitCode, MigrationResult, UnitResult
from cpm_migrate.reporting.base import Reporter

log = structlog.get_logger(__name__)

UnitRunner = Callable[[MigrationOptions], Awaitable[MigrationResult]]


def unit_options(options: MigrationOptions, solution_path: str) -> MigrationOptions:
    """Options for one solution: everything lives next to the ``.sln``."""
    solution_dir = os.path.dirname(solution_path)
    return dataclasses.replace(
        options,
        solution_dir=solution_path,
        project_dir="",
        output_dir=solution_dir,
        backup_dir=solution_dir,
        gitignore_dir=solution_dir,
        rollback=False,
        interactive=False,
        quiet=True,
        batch_dir=None,
        batch_parallel=False,
        batch_continue=False,
        exclude_dirs=[],
    )


class BatchOrchestrator:
    """Applies ``unit_runner`` to each discovered solution and aggregates.

    A unit failure never aborts sibling units in parallel mode; in sequential
    mode it stops the batch unless ``batch_continue`` is set.
    """

    def __init__(self, reporter: Reporter, unit_runner: UnitRunner) -> None:
        self.reporter = reporter
        self.unit_runner = unit_runner

    async def run(self, options: MigrationOptions) -> BatchResult:
        root = options.batch_dir or "."
        result = BatchResult(operation=options.mode, dry_run=options.dry_run)
        excluded = options.exclude_dirs or DEFAULT_EXCLUDED_DIRECTORIES
        solutions = discover_solutions(root, excluded)
        if not solutions:
            result.errors.append(f"No solution files found under {os.path.abspath(root)}.")
            self.reporter.error(result.errors[-1])
            return result

        self.reporter.info(f"Found {len(solutions)} solution(s) under {os.path.abspath(root)}.")
        if options.batch_parallel:
            result.units = await self._run_parallel(options, solutions)
        else:
            result.units = await self._run_sequential(options, solutions)

        self._summarize(result)
        return result

    async def _run_unit(self, options: MigrationOptions, solution: str) -> UnitResult:
        name = os.path.basename(solution)
        try:
            outcome = await self.unit_runner(unit_options(options, solution))
        except Exception as e:
            log.error("batch.unit_failed", solution=solution, exc_info=True)
            return UnitResult(
                path=solution, name=name, exit_code=ExitCode.UNEXPECTED_ERROR, error=str(e)
            )
        return UnitResult.from_result(solution, name, outcome)

    async def _run_sequential(self, options: MigrationOptions, solutions: list[str]) -> list[UnitResult]:
        units: list[UnitResult] = []
        for solution in solutions:
            unit = await self._run_unit(options, solution)
            units.append(unit)
            self._report_unit(unit)
            if not unit.success and not options.batch_continue:
                skipped = len(solutions) - len(units)
                if skipped:
                    self.reporter.warn(
                        f"Stopping after failure in {unit.name}; {skipped} solution(s) not processed. "
                        "Use --continue-on-failure to keep going."
                    )
                break
        return units

    async def _run_parallel(self, options: MigrationOptions, solutions: list[str]) -> list[UnitResult]:
        sem = asyncio.Semaphore(options.max_parallelism or os.cpu_count() or 4)
        units: list[UnitResult] = []

        async def _run(solution: str) -> None:
            async with sem:
                unit = await self._run_unit(options, solution)
            units.append(unit)
            self._report_unit(unit)

        await asyncio.gather(*(_run(s) for s in solutions))
        return sorted(units, key=lambda u: u.path)

    def _report_unit(self, unit: UnitResult) -> None:
        if unit.success:
            self.reporter.success(
                f"✓ {unit.name}: {unit.projects_processed} project(s), {unit.packages_found} package(s)"
            )
        else:
            detail = f": {unit.error}" if unit.error else ""
            self.reporter.error(f"✗ {unit.name} (exit {int(unit.exit_code)}){detail}")

    def _summarize(self, result: BatchResult) -> None:
        rows = [
            [
                u.name,
                "ok" if u.success else f"failed ({int(u.exit_code)})",
                str(u.projects_processed),
                str(u.packages_found),
                str(u.conflicts_resolved),
            ]
            for u in result.units
        ]
        self.reporter.render_table(
            "Batch summary", ["Solution", "Status", "Projects", "Packages", "Conflicts"], rows
        )
        totals = result.totals
        self.reporter.info(
            f"{result.succeeded} succeeded, {result.failed} failed; "
            f"{totals['projects_processed']} project(s), {totals['packages_found']} package(s), "
            f"{totals['conflicts_resolved']} conflict(s) resolved."
        )

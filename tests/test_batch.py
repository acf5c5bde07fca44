"""Tests for BatchOrchestrator with fake unit runners."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cpm_migrate.batch import BatchOrchestrator, unit_options
from cpm_migrate.models.options import MigrationOptions
from cpm_migrate.models.result import BatchResult, ExitCode, MigrationResult, UnitResult
from cpm_migrate.orchestrator import MigrationOrchestrator
from cpm_migrate.testing import RecordingReporter


def _tree(root: Path, names: list[str]) -> list[Path]:
    paths = []
    for name in names:
        sln = root / name / f"{name}.sln"
        sln.parent.mkdir(parents=True)
        sln.write_text("")
        paths.append(sln)
    return paths


def runner(codes: dict[str, ExitCode] | None = None, seen: list[str] | None = None, delay: float = 0.0):
    codes = codes or {}

    async def run(options: MigrationOptions) -> MigrationResult:
        name = Path(options.solution_dir).stem
        if seen is not None:
            seen.append(name)
        if delay:
            await asyncio.sleep(delay)
        code = codes.get(name, ExitCode.SUCCESS)
        return MigrationResult(
            exit_code=code,
            projects_processed=2,
            packages_found=3,
            conflicts_resolved=1,
            errors=[] if code == ExitCode.SUCCESS else [f"{name} failed"],
        )

    return run


class TestUnitOptions:
    def test_paths_follow_solution(self, tmp_path):
        sln = tmp_path / "a" / "A.sln"
        opts = unit_options(
            MigrationOptions(batch_dir=str(tmp_path), batch_parallel=True, interactive=True, retention=3),
            str(sln),
        )
        assert opts.solution_dir == str(sln)
        assert opts.output_dir == opts.backup_dir == opts.gitignore_dir == str(sln.parent)
        assert opts.batch_dir is None
        assert not opts.interactive
        assert opts.quiet
        assert opts.retention == 3


class TestSequential:
    @pytest.mark.asyncio
    async def test_all_succeed(self, tmp_path, reporter):
        _tree(tmp_path, ["a", "b", "c"])
        result = await BatchOrchestrator(reporter, runner()).run(MigrationOptions(batch_dir=str(tmp_path)))
        assert result.success
        assert result.exit_code == ExitCode.SUCCESS
        assert [u.name for u in result.units] == ["a.sln", "b.sln", "c.sln"]
        assert result.totals == {"projects_processed": 6, "packages_found": 9, "conflicts_resolved": 3}
        assert reporter.tables[-1][0] == "Batch summary"

    @pytest.mark.asyncio
    async def test_stops_on_failure(self, tmp_path, reporter):
        _tree(tmp_path, ["a", "b", "c"])
        seen: list[str] = []
        result = await BatchOrchestrator(
            reporter, runner({"b": ExitCode.VERSION_CONFLICT}, seen)
        ).run(MigrationOptions(batch_dir=str(tmp_path)))
        assert seen == ["a", "b"]
        assert result.failed == 1
        assert result.exit_code == ExitCode.VERSION_CONFLICT
        assert any("--continue-on-failure" in w for w in reporter.warnings)

    @pytest.mark.asyncio
    async def test_continue_on_failure(self, tmp_path, reporter):
        _tree(tmp_path, ["a", "b", "c"])
        seen: list[str] = []
        result = await BatchOrchestrator(
            reporter, runner({"a": ExitCode.FILE_OPERATION_ERROR}, seen)
        ).run(MigrationOptions(batch_dir=str(tmp_path), batch_continue=True))
        assert seen == ["a", "b", "c"]
        assert result.succeeded == 2
        assert result.exit_code == ExitCode.FILE_OPERATION_ERROR
        assert result.units[0].error == "a failed"

    @pytest.mark.asyncio
    async def test_runner_exception_becomes_unit_failure(self, tmp_path, reporter):
        _tree(tmp_path, ["a"])

        async def boom(options):
            raise RuntimeError("kaput")

        result = await BatchOrchestrator(reporter, boom).run(MigrationOptions(batch_dir=str(tmp_path)))
        assert result.units[0].exit_code == ExitCode.UNEXPECTED_ERROR
        assert result.units[0].error == "kaput"
        assert result.exit_code == ExitCode.FILE_OPERATION_ERROR


class TestParallel:
    @pytest.mark.asyncio
    async def test_results_sorted_and_all_run(self, tmp_path, reporter):
        _tree(tmp_path, ["c", "a", "b"])
        seen: list[str] = []
        result = await BatchOrchestrator(
            reporter, runner({"a": ExitCode.VERSION_CONFLICT}, seen, delay=0.01)
        ).run(MigrationOptions(batch_dir=str(tmp_path), batch_parallel=True, max_parallelism=2))
        assert sorted(seen) == ["a", "b", "c"]
        assert [u.name for u in result.units] == ["a.sln", "b.sln", "c.sln"]
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_parallelism_bounded(self, tmp_path, reporter):
        _tree(tmp_path, ["a", "b", "c", "d"])
        active = 0
        peak = 0

        async def run(options):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return MigrationResult()

        await BatchOrchestrator(reporter, run).run(
            MigrationOptions(batch_dir=str(tmp_path), batch_parallel=True, max_parallelism=2)
        )
        assert peak == 2


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_no_solutions(self, tmp_path, reporter):
        result = await BatchOrchestrator(reporter, runner()).run(MigrationOptions(batch_dir=str(tmp_path)))
        assert result.units == []
        assert result.exit_code == ExitCode.NO_PROJECTS_FOUND
        assert result.errors

    @pytest.mark.asyncio
    async def test_excluded_dirs(self, tmp_path, reporter):
        _tree(tmp_path, ["a", "legacy"])
        result = await BatchOrchestrator(reporter, runner()).run(
            MigrationOptions(batch_dir=str(tmp_path), exclude_dirs=["legacy"])
        )
        assert [u.name for u in result.units] == ["a.sln"]


class TestBatchResult:
    def test_exit_code_precedence(self):
        def unit(code):
            return UnitResult(path="p", name="n", exit_code=code)

        assert BatchResult().exit_code == ExitCode.NO_PROJECTS_FOUND
        assert BatchResult(units=[unit(ExitCode.SUCCESS)]).exit_code == ExitCode.SUCCESS
        assert (
            BatchResult(units=[unit(ExitCode.FILE_OPERATION_ERROR), unit(ExitCode.VERSION_CONFLICT)]).exit_code
            == ExitCode.VERSION_CONFLICT
        )
        assert BatchResult(units=[unit(ExitCode.NO_PROJECTS_FOUND)]).exit_code == ExitCode.FILE_OPERATION_ERROR


class TestRealUnits:
    @pytest.mark.asyncio
    async def test_migrates_each_solution(self, tmp_path, make_solution):
        make_solution(tmp_path / "one", {"A": [("X", "1.0.0")]}, name="One")
        make_solution(tmp_path / "two", {"B": [("X", "2.0.0")]}, name="Two")

        async def unit(options):
            return await MigrationOrchestrator(RecordingReporter()).execute(options)

        result = await BatchOrchestrator(RecordingReporter(), unit).run(
            MigrationOptions(batch_dir=str(tmp_path))
        )
        assert result.success
        assert (tmp_path / "one" / "Directory.Packages.props").exists()
        assert (tmp_path / "two" / ".cpm_backup").is_dir()

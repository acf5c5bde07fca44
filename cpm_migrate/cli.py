"""CLI entry point: cpm-migrate.

Subcommands:
    cpm-migrate migrate -s ./src               # Migrate a solution to Directory.Packages.props
    cpm-migrate analyze -s ./src               # Report package issues without changing anything
    cpm-migrate rollback --backup-dir ./src    # Undo the last migration
    cpm-migrate backups list|prune|prune-all   # Manage backup history
    cpm-migrate batch ./repos --parallel       # Migrate every solution below a directory
    cpm-migrate init-config                    # Write a sample .cpm-migrate.json
"""

from __future__ import annotations

import asyncio
import dataclasses
import os
import sys
from typing import Any, Callable

import click
from click.core import ParameterSource

from cpm_migrate import __version__
from cpm_migrate.batch import BatchOrchestrator
from cpm_migrate.config import CONFIG_FILE_NAME, create_sample_config, load_config, merge_config
from cpm_migrate.core.logging import setup_logging
from cpm_migrate.exceptions import ValidationError
from cpm_migrate.models.options import ConflictStrategy, MigrationOptions, OutputFormat
from cpm_migrate.models.result import BatchResult, ExitCode, MigrationResult
from cpm_migrate.orchestrator import MigrationOrchestrator
from cpm_migrate.reporting.console import ConsoleReporter
from cpm_migrate.schemas import to_json

_OPTION_FIELDS = {f.name for f in dataclasses.fields(MigrationOptions)}


# ── shared option groups ──


def _apply(decorators: list[Callable]) -> Callable:
    def wrapper(f: Callable) -> Callable:
        for decorator in reversed(decorators):
            f = decorator(f)
        return f

    return wrapper


_output_options = _apply(
    [
        click.option(
            "--output",
            "output_format",
            type=click.Choice([f.value for f in OutputFormat]),
            default=OutputFormat.TERMINAL.value,
            help="Result format",
        ),
        click.option("--output-file", default=None, help="Write the JSON result to this file"),
        click.option("-q", "--quiet", is_flag=True, help="Only print warnings and errors"),
        click.option("-i", "--interactive", is_flag=True, help="Ask before destructive steps"),
    ]
)

_source_options = _apply(
    [
        click.option("-s", "--solution", "solution_dir", default=".", help="Solution file or directory"),
        click.option("-p", "--project", "project_dir", default="", help="Single project file or directory"),
        click.option("--include-transitive", is_flag=True, help="Also inspect transitive dependencies"),
        click.option("--scan-timeout", type=float, default=120.0, show_default=True, help="Seconds per transitive scan"),
    ]
)

_migrate_options = _apply(
    [
        click.option("-o", "--output-dir", default=".", help="Where Directory.Packages.props is written"),
        click.option("-k", "--keep-attrs", "keep_attributes", is_flag=True, help="Keep Version attributes in projects"),
        click.option("-n", "--no-backup", is_flag=True, help="Do not back up modified files"),
        click.option("--backup-dir", default=".", help="Parent directory of the backup folder"),
        click.option("--add-gitignore", is_flag=True, help="Add the backup folder to .gitignore"),
        click.option("--gitignore-dir", default=".", help="Directory holding the .gitignore to update"),
        click.option("-d", "--dry-run", is_flag=True, help="Show what would change without writing"),
        click.option(
            "--conflict-strategy",
            type=click.Choice([s.value for s in ConflictStrategy]),
            default=ConflictStrategy.HIGHEST.value,
            show_default=True,
            help="How to pick one version when projects disagree",
        ),
        click.option("--merge", "merge_existing", is_flag=True, help="Merge into an existing Directory.Packages.props"),
        click.option("--retention", type=click.IntRange(min=1), default=None, help="Keep only the newest N backup sets"),
    ]
)


def _build_options(ctx: click.Context, config_start: str | None = None, **extra: Any) -> MigrationOptions:
    """Options from the command line, with ``.cpm-migrate.json`` filling the rest."""
    params = {k: v for k, v in ctx.params.items() if k in _OPTION_FIELDS}
    params.update(extra)
    if "conflict_strategy" in params:
        params["conflict_strategy"] = ConflictStrategy(params["conflict_strategy"])
    if "output_format" in params:
        params["output_format"] = OutputFormat(params["output_format"])
    if "exclude_dirs" in params:
        params["exclude_dirs"] = list(params["exclude_dirs"])
    options = MigrationOptions(**params)

    explicit = {
        name
        for name in ctx.params
        if ctx.get_parameter_source(name) == ParameterSource.COMMANDLINE
    }
    start = config_start or options.project_dir or options.solution_dir or "."
    if os.path.isfile(start):
        start = os.path.dirname(os.path.abspath(start))
    config = load_config(start, _reporter(options))
    if config is not None:
        merge_config(options, config, explicit)
    if options.conflict_strategy == ConflictStrategy.INTERACTIVE:
        options.interactive = True
    return options


def _reporter(options: MigrationOptions) -> ConsoleReporter:
    as_json = options.output_format == OutputFormat.JSON
    return ConsoleReporter(quiet=options.quiet, interactive=options.interactive, err=as_json)


def _emit(options: MigrationOptions, result: MigrationResult | BatchResult) -> None:
    if options.output_format != OutputFormat.JSON:
        return
    payload = to_json(result)
    if options.output_file:
        with open(options.output_file, "w", encoding="utf-8") as f:
            f.write(payload + "\n")
    else:
        click.echo(payload)


_STATUS_ICONS = {"completed": "+", "failed": "!", "skipped": "-", "running": "~"}


def _echo_phases(result: MigrationResult) -> None:
    if not result.phases:
        return
    total = round(sum(p["duration"] or 0 for p in result.phases), 3)
    click.echo(f"\nPhase summary (total: {total}s):", err=True)
    for p in result.phases:
        icon = _STATUS_ICONS.get(p["status"], "?")
        duration = f" ({p['duration']}s)" if p["duration"] else ""
        detail = f" - {p['detail'] or p['error']}" if p["detail"] or p["error"] else ""
        click.echo(f"  [{icon}] {p['phase']}{duration}{detail}", err=True)


def _run(options: MigrationOptions) -> None:
    reporter = _reporter(options)
    result = asyncio.run(MigrationOrchestrator(reporter).execute(options))
    _emit(options, result)
    if click.get_current_context().find_root().params.get("verbose"):
        _echo_phases(result)
    sys.exit(int(result.exit_code))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="cpm-migrate")
def main(verbose: bool) -> None:
    """cpm-migrate: move .NET solutions to Central Package Management."""
    setup_logging(verbose)


@main.command()
@_source_options
@_migrate_options
@_output_options
@click.pass_context
def migrate(ctx: click.Context, **_: Any) -> None:
    """Centralize PackageReference versions into Directory.Packages.props."""
    _run(_build_options(ctx))


@main.command()
@_source_options
@_output_options
@click.pass_context
def analyze(ctx: click.Context, **_: Any) -> None:
    """Report version inconsistencies and redundant references (read-only)."""
    _run(_build_options(ctx, analyze=True))


@main.command()
@click.option("--backup-dir", default=".", help="Parent directory of the backup folder")
@_output_options
@click.pass_context
def rollback(ctx: click.Context, **_: Any) -> None:
    """Restore the files changed by the last migration."""
    _run(_build_options(ctx, config_start=ctx.params["backup_dir"], rollback=True))


@main.group()
def backups() -> None:
    """Inspect and prune backup history."""


@backups.command("list")
@click.option("--backup-dir", default=".", help="Parent directory of the backup folder")
@_output_options
@click.pass_context
def list_backups(ctx: click.Context, **_: Any) -> None:
    """List backup sets, newest first."""
    _run(_build_options(ctx, config_start=ctx.params["backup_dir"], list_backups=True))


@backups.command()
@click.option("--backup-dir", default=".", help="Parent directory of the backup folder")
@click.option("--keep", "retention", type=click.IntRange(min=1), required=True, help="Backup sets to keep")
@_output_options
@click.pass_context
def prune(ctx: click.Context, **_: Any) -> None:
    """Delete all but the newest N backup sets."""
    _run(_build_options(ctx, config_start=ctx.params["backup_dir"], prune_backups=True))


@backups.command("prune-all")
@click.option("--backup-dir", default=".", help="Parent directory of the backup folder")
@_output_options
@click.pass_context
def prune_all(ctx: click.Context, **_: Any) -> None:
    """Delete every backup set and the rollback manifest."""
    _run(_build_options(ctx, config_start=ctx.params["backup_dir"], prune_all=True))


@main.command()
@click.argument("root", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--parallel", "batch_parallel", is_flag=True, help="Process solutions concurrently")
@click.option("--continue-on-failure", "batch_continue", is_flag=True, help="Keep going after a failed solution")
@click.option("--max-parallelism", type=click.IntRange(min=1), default=None, help="Concurrent solutions (default: CPU count)")
@click.option("--exclude", "exclude_dirs", multiple=True, help="Directory name to skip (repeatable)")
@click.option("--analyze", "analyze", is_flag=True, help="Analyze every solution instead of migrating")
@click.option("--include-transitive", is_flag=True, help="Also inspect transitive dependencies")
@_migrate_options
@_output_options
@click.pass_context
def batch(ctx: click.Context, root: str, **_: Any) -> None:
    """Migrate (or analyze) every solution below ROOT."""
    options = _build_options(ctx, config_start=root, batch_dir=root)
    reporter = _reporter(options)
    try:
        options.validate()
    except ValidationError as e:
        reporter.error(str(e))
        if e.remediation:
            reporter.info(e.remediation)
        sys.exit(int(ExitCode.VALIDATION_ERROR))

    async def unit(unit_options: MigrationOptions) -> MigrationResult:
        return await MigrationOrchestrator(ConsoleReporter(quiet=True, interactive=False, err=True)).execute(
            unit_options
        )

    result = asyncio.run(BatchOrchestrator(reporter, unit).run(options))
    _emit(options, result)
    sys.exit(int(result.exit_code))


@main.command("init-config")
@click.argument("path", default=CONFIG_FILE_NAME)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(path: str, force: bool) -> None:
    """Write a sample .cpm-migrate.json."""
    if os.path.exists(path) and not force:
        click.echo(f"{path} already exists (use --force to overwrite)", err=True)
        sys.exit(int(ExitCode.VALIDATION_ERROR))
    create_sample_config(path)
    click.echo(f"Config written to {path}")


if __name__ == "__main__":
    main()

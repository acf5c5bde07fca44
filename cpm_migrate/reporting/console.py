"""Terminal reporter built on click."""

from __future__ import annotations

from typing import Sequence

import click

from cpm_migrate.models.result import ConflictInfo
from cpm_migrate.reporting.base import ConflictChoice, ResolutionAction


class ConsoleReporter:
    """Writes to stdout/stderr with click; ``quiet`` silences info-level output.

    With ``interactive=False`` every prompt returns its default without reading
    stdin, so the reporter is safe in CI and batch runs.
    """

    def __init__(self, quiet: bool = False, interactive: bool = True, err: bool = False):
        self.quiet = quiet
        self.interactive = interactive
        self._err = err

    def info(self, message: str) -> None:
        if not self.quiet:
            click.echo(message, err=self._err)

    def success(self, message: str) -> None:
        if not self.quiet:
            click.secho(message, fg="green", err=self._err)

    def warn(self, message: str) -> None:
        click.secho(f"Warning: {message}", fg="yellow", err=True)

    def error(self, message: str) -> None:
        click.secho(f"Error: {message}", fg="red", err=True)

    def dim(self, message: str) -> None:
        if not self.quiet:
            click.secho(message, dim=True, err=self._err)

    def confirm(self, question: str, default: bool = False) -> bool:
        if not self.interactive:
            return default
        return click.confirm(question, default=default, err=True)

    def choose(self, title: str, options: Sequence[str]) -> str:
        if not self.interactive or len(options) == 1:
            return options[0]
        click.echo(title, err=True)
        for i, option in enumerate(options, 1):
            click.echo(f"  {i}) {option}", err=True)
        index = click.prompt(
            "Select", type=click.IntRange(1, len(options)), default=1, err=True
        )
        return options[index - 1]

    def choose_resolution(self, conflict: ConflictInfo, suggested: str) -> ConflictChoice:
        if not self.interactive:
            return ConflictChoice(ResolutionAction.USE_SUGGESTED)
        click.secho(f"\nConflict: {conflict.package}", bold=True, err=True)
        versions = list(conflict.versions)
        for version in versions:
            projects = ", ".join(conflict.versions[version])
            marker = " (suggested)" if version == suggested else ""
            click.echo(f"  {version:20s} {projects}{marker}", err=True)
        labels = [f"Use {suggested}"] + [f"Use {v}" for v in versions if v != suggested] + ["Abort"]
        picked = self.choose("How should this conflict be resolved?", labels)
        if picked == "Abort":
            return ConflictChoice(ResolutionAction.ABORT)
        if picked == labels[0]:
            return ConflictChoice(ResolutionAction.USE_SUGGESTED)
        return ConflictChoice(ResolutionAction.USE_VERSION, version=picked[len("Use "):])

    def render_table(
        self, title: str, headers: Sequence[str], rows: Sequence[Sequence[str]]
    ) -> None:
        if self.quiet:
            return
        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(str(cell)))
        click.secho(title, bold=True, err=self._err)
        click.echo("  ".join(h.ljust(w) for h, w in zip(headers, widths)), err=self._err)
        click.echo("  ".join("-" * w for w in widths), err=self._err)
        for row in rows:
            click.echo("  ".join(str(c).ljust(w) for c, w in zip(row, widths)), err=self._err)

    def preview(self, title: str, text: str) -> None:
        if self.quiet:
            return
        click.secho(f"── {title} ──", bold=True, err=self._err)
        click.echo(text, err=self._err)

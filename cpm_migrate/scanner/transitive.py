"""Transitive package listing via ``dotnet list package --include-transitive``."""

from __future__ import annotations

import asyncio
import os
import re

import structlog

from cpm_migrate.models.package import PackageReference
from cpm_migrate.reporting.base import Reporter
from cpm_migrate.scanner.project_file import project_name

log = structlog.get_logger(__name__)

DEFAULT_COMMAND = ("dotnet", "list", "package", "--include-transitive")
DEFAULT_TIMEOUT = 120.0

_ROW_RE = re.compile(r">\s*([^\s]+)\s+([^\s]+)")


def parse_transitive_output(output: str, project_path: str) -> list[PackageReference]:
    """Pick the rows under each "Transitive Package" header.

    Output looks like::

        [net8.0]:
        Top-level Package      Requested   Resolved
        > Newtonsoft.Json      13.0.1      13.0.1

        Transitive Package                 Resolved
        > System.Memory                    4.5.5
    """
    refs: list[PackageReference] = []
    name = project_name(project_path)
    in_transitive = False
    for line in output.splitlines():
        stripped = line.strip()
        if "Transitive Package" in line:
            in_transitive = True
            continue
        if "Top-level Package" in line or stripped.startswith("["):
            in_transitive = False
            continue
        if in_transitive and stripped.startswith(">"):
            m = _ROW_RE.search(stripped)
            if m:
                refs.append(
                    PackageReference(
                        package_name=m.group(1),
                        version=m.group(2),
                        project_path=os.path.abspath(project_path),
                        project_name=name,
                        is_transitive=True,
                    )
                )
    return refs


class TransitiveScanner:
    """Runs the listing command in the project's directory with a deadline.

    Every failure mode (missing tool, non-zero exit, timeout) degrades to an
    empty result plus a warning; a migration never fails because of it.
    """

    def __init__(
        self,
        reporter: Reporter | None = None,
        command: tuple[str, ...] = DEFAULT_COMMAND,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.reporter = reporter
        self.command = command
        self.timeout = timeout

    async def scan(self, project_path: str) -> tuple[list[PackageReference], bool]:
        project_dir = os.path.dirname(os.path.abspath(project_path)) or "."
        label = os.path.basename(project_path)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=project_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._warn(f"Could not scan transitive dependencies for {label}: {e}")
            return [], False

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            log.warning("transitive.timeout", project=project_path, timeout=self.timeout)
            self._warn(
                f"Transitive scan for {label} timed out after {self.timeout:g}s; skipped."
            )
            return [], False

        if proc.returncode != 0:
            log.warning(
                "transitive.failed",
                project=project_path,
                returncode=proc.returncode,
                stderr=stderr.decode(errors="replace").strip(),
            )
            self._warn(
                f"Transitive scan for {label} failed (exit {proc.returncode}); "
                "is the project restored?"
            )
            return [], False

        refs = parse_transitive_output(stdout.decode(errors="replace"), project_path)
        log.debug("transitive.scanned", project=project_path, count=len(refs))
        return refs, True

    def _warn(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.warn(message)

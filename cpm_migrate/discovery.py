"""Locate solutions and the projects they contain."""

from __future__ import annotations

import glob
import os
import re
from typing import Iterable

import structlog

from cpm_migrate.reporting.base import Reporter

log = structlog.get_logger(__name__)

# Project("{FAE04EC0-...}") = "App", "src\App\App.csproj", "{GUID}"
_PROJECT_RE = re.compile(r'Project\("\{(.+?)\}"\) = "(.+?)", "(.+?)"', re.MULTILINE)

PROJECT_EXTENSION = ".csproj"

DEFAULT_EXCLUDED_DIRECTORIES = (
    "node_modules",
    "bin",
    "obj",
    ".git",
    "packages",
    ".vs",
    ".idea",
    "TestResults",
    "artifacts",
    ".nuget",
)


def discover_from_solution_root(path: str, reporter: Reporter) -> tuple[str, list[str]]:
    """Resolve ``path`` (a ``.sln`` or a directory holding one) to its projects.

    Returns ``(base_path, project_paths)``; ``("", [])`` when nothing is found.
    Several solutions in one directory are disambiguated through the reporter.
    """
    full = os.path.abspath(path)
    if os.path.isdir(full):
        solutions = sorted(glob.glob(os.path.join(full, "*.sln")))
        if not solutions:
            reporter.info("No solution file found in the specified directory.")
            return "", []
        if len(solutions) > 1:
            names = [os.path.basename(s) for s in solutions]
            picked = reporter.choose(
                "Multiple solution files found. Which one would you like to use?", names
            )
            full = solutions[names.index(picked)]
        else:
            full = solutions[0]

    if not os.path.isfile(full):
        reporter.info("Solution file not found.")
        return "", []

    base = os.path.dirname(full)
    with open(full, encoding="utf-8-sig") as f:
        content = f.read()

    projects: list[str] = []
    for m in _PROJECT_RE.finditer(content):
        relative = m.group(3)
        if not relative.lower().endswith(PROJECT_EXTENSION):
            continue
        relative = relative.replace("\\", os.sep).replace("/", os.sep)
        projects.append(os.path.normpath(os.path.join(base, relative)))
        reporter.dim(f"Found project: {m.group(2)}")
    log.debug("discovery.solution", solution=full, projects=len(projects))
    return base, projects


def discover_from_project_path(path: str, reporter: Reporter) -> tuple[str, list[str]]:
    """A single project file, or the first ``.csproj`` in a directory."""
    full = os.path.abspath(path)
    if os.path.isdir(full):
        candidates = sorted(glob.glob(os.path.join(full, f"*{PROJECT_EXTENSION}")))
        if not candidates:
            reporter.info("No project file found in the specified directory.")
            return "", []
        full = candidates[0]
    if not os.path.isfile(full):
        reporter.info("Project file not found.")
        return "", []
    return os.path.dirname(full), [full]


def discover_solutions(
    root: str, excluded: Iterable[str] = DEFAULT_EXCLUDED_DIRECTORIES
) -> list[str]:
    """Every ``.sln`` below ``root``, skipping excluded directory names (any case)."""
    skip = {name.lower() for name in excluded}
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(os.path.abspath(root)):
        dirnames[:] = [d for d in dirnames if d.lower() not in skip]
        found.extend(os.path.join(dirpath, f) for f in filenames if f.lower().endswith(".sln"))
    return sorted(found)

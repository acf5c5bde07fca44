"""Shared pytest fixtures for cpm-migrate tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cpm_migrate.testing import RecordingReporter

SOLUTION_HEADER = "Microsoft Visual Studio Solution File, Format Version 12.00\n"
PROJECT_LINE = (
    'Project("{{FAE04EC0-301F-11D3-BF4B-00C04F79EFBC}}") = "{name}", "{path}", '
    '"{{00000000-0000-0000-0000-{index:012d}}}"\nEndProject\n'
)


def project_xml(packages: list[tuple[str, str]]) -> str:
    refs = "\n".join(
        f'    <PackageReference Include="{name}" Version="{version}" />' for name, version in packages
    )
    return (
        '<Project Sdk="Microsoft.NET.Sdk">\n'
        "  <PropertyGroup>\n"
        "    <TargetFramework>net8.0</TargetFramework>\n"
        "  </PropertyGroup>\n"
        "  <ItemGroup>\n"
        f"{refs}\n"
        "  </ItemGroup>\n"
        "</Project>\n"
    )


def write_solution(root: Path, projects: dict[str, list[tuple[str, str]]], name: str = "App") -> Path:
    """Write ``<root>/<name>.sln`` plus ``src/<Project>/<Project>.csproj`` files."""
    root.mkdir(parents=True, exist_ok=True)
    lines = [SOLUTION_HEADER]
    for index, (project, packages) in enumerate(projects.items(), 1):
        project_dir = root / "src" / project
        project_dir.mkdir(parents=True, exist_ok=True)
        (project_dir / f"{project}.csproj").write_text(project_xml(packages))
        lines.append(PROJECT_LINE.format(name=project, path=f"src\\{project}\\{project}.csproj", index=index))
    sln = root / f"{name}.sln"
    sln.write_text("".join(lines))
    return sln


def write_assets(project_dir: Path, direct: dict[str, str], graph: dict[str, dict[str, str]]) -> Path:
    """Write ``obj/project.assets.json``; ``graph`` maps ``Name/Version`` to its dependencies."""
    target = {node: {"type": "package", "dependencies": deps} for node, deps in graph.items()}
    doc = {
        "version": 3,
        "targets": {"net8.0": target},
        "project": {
            "frameworks": {
                "net8.0": {"dependencies": {n: {"version": v} for n, v in direct.items()}}
            }
        },
    }
    path = project_dir / "obj" / "project.assets.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(doc))
    return path


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def two_project_solution(tmp_path: Path) -> Path:
    """Web pins Newtonsoft.Json 13.0.1, Core pins 12.0.3."""
    return write_solution(
        tmp_path / "repo",
        {
            "Web": [("Newtonsoft.Json", "13.0.1"), ("Serilog", "3.1.1")],
            "Core": [("Newtonsoft.Json", "12.0.3")],
        },
    )


@pytest.fixture
def make_solution():
    return write_solution


@pytest.fixture
def make_assets():
    return write_assets

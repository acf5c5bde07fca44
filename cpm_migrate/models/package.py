"""Package reference model and the version map built while scanning."""

from __future__ import annotations

from dataclasses import dataclass

# package name -> every version requested for it across the scanned projects
VersionMap = dict[str, set[str]]


@dataclass(frozen=True)
class PackageReference:
    """A single PackageReference found in a project file (or via transitive scan)."""

    package_name: str
    version: str
    project_path: str
    project_name: str
    is_transitive: bool = False


def add_version(version_map: VersionMap, package_name: str, version: str) -> None:
    version_map.setdefault(package_name, set()).add(version)

"""Redundant direct reference detection over the restored lock graph.

``dotnet restore`` writes ``obj/project.assets.json`` next to each project.
Its ``targets`` section already holds the resolved transitive graph, keyed by
``"Name/Version"``; ``project.frameworks`` lists what the project declares
directly. A direct reference is redundant when another direct reference
already brings it in.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

import structlog

from cpm_migrate.reporting.base import Reporter

log = structlog.get_logger(__name__)

ASSETS_FILE = os.path.join("obj", "project.assets.json")


def _node_key(name: str, version: str) -> str:
    return f"{name.lower()}@{version}"


def _plain_version(version: str) -> str:
    """``[1.0.0, )`` -> ``1.0.0``; exact versions pass through."""
    v = version.strip()
    if v[:1] in "[(":
        v = v[1:].split(",", 1)[0].rstrip("])").strip()
    return v


@dataclass
class LockGraph:
    """Arena of resolved packages for one target framework.

    Nodes are keyed ``name@version`` with the name lowercased; edges are
    ``(name, version)`` pairs pointing at other keys.
    """

    edges: dict[str, list[tuple[str, str]]] = field(default_factory=dict)
    # lowercased name -> node keys carrying it
    by_name: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_target(cls, target: dict) -> LockGraph:
        graph = cls()
        for node_id, node in target.items():
            name, _, version = node_id.partition("/")
            key = _node_key(name, version)
            deps = (node or {}).get("dependencies") or {}
            graph.edges[key] = [(dep, _plain_version(str(ver))) for dep, ver in deps.items()]
            graph.by_name.setdefault(name.lower(), []).append(key)
        return graph

    def lookup(self, name: str, version: str) -> str | None:
        key = _node_key(name, _plain_version(version))
        if key in self.edges:
            return key
        # Declared ranges rarely match the resolved key; a target resolves one version per name.
        candidates = self.by_name.get(name.lower(), [])
        return candidates[0] if len(candidates) == 1 else None

    def transitive_closure(self, name: str, version: str) -> set[str]:
        """Lowercased names reachable from ``name@version``, excluding the root itself."""
        closure: set[str] = set()
        start = self.lookup(name, version)
        if start is None:
            return closure
        visited = {start}
        stack = [start]
        while stack:
            key = stack.pop()
            for dep_name, dep_version in self.edges.get(key, []):
                closure.add(dep_name.lower())
                dep_key = self.lookup(dep_name, dep_version)
                if dep_key is not None and dep_key not in visited:
                    visited.add(dep_key)
                    stack.append(dep_key)
        return closure


def find_redundant(graph: LockGraph, direct: dict[str, str]) -> list[str]:
    """Direct dependencies reachable from some *other* direct dependency."""
    closures = {name: graph.transitive_closure(name, version) for name, version in direct.items()}
    redundant: list[str] = []
    for name in direct:
        for other, closure in closures.items():
            if other != name and name.lower() in closure:
                redundant.append(name)
                break
    return redundant


class DependencyGraphService:
    def __init__(self, reporter: Reporter | None = None):
        self.reporter = reporter

    def identify_redundant_direct_references(self, project_path: str) -> list[str]:
        """Return redundant direct references of the project at ``project_path``.

        A missing or unreadable lock graph yields ``[]`` and a warning.
        """
        project_dir = os.path.dirname(os.path.abspath(project_path))
        assets_path = os.path.join(project_dir, ASSETS_FILE)
        project_name = os.path.basename(project_path)

        if not os.path.isfile(assets_path):
            self._warn(
                f"No restore output for {project_name} ({ASSETS_FILE}); "
                "run 'dotnet restore' to enable redundant reference detection."
            )
            return []

        try:
            with open(assets_path, encoding="utf-8-sig") as f:
                doc = json.load(f)
            frameworks = doc["project"]["frameworks"]
            targets = doc.get("targets") or {}
            redundant: list[str] = []
            for framework, spec in frameworks.items():
                target = targets.get(framework)
                if target is None:
                    continue
                direct = {
                    name: str((info or {}).get("version", ""))
                    for name, info in ((spec or {}).get("dependencies") or {}).items()
                }
                for name in find_redundant(LockGraph.from_target(target), direct):
                    if name not in redundant:
                        redundant.append(name)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            log.warning("graph.parse_failed", project=project_path, error=str(exc))
            self._warn(f"Could not analyze dependency graph for {project_name}: {exc}")
            return []

        log.debug("graph.analyzed", project=project_path, redundant=redundant)
        return redundant

    def _warn(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.warn(message)

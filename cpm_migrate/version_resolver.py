"""Version conflict detection and resolution.

NuGet versions follow SemVer 2.0 with up to four numeric parts
(``1.2.3.4-beta.1+sha``). Prerelease labels such as ``-preview.3`` are
common, so comparison follows SemVer precedence rather than PEP 440.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

import structlog

from cpm_migrate.models.options import ConflictStrategy
from cpm_migrate.models.package import VersionMap
from cpm_migrate.reporting.base import Reporter

log = structlog.get_logger(__name__)

_VERSION_RE = re.compile(
    r"^v?(?P<numbers>\d+(?:\.\d+){0,3})"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


@dataclass(frozen=True)
class SemanticVersion:
    numbers: tuple[int, int, int, int]
    prerelease: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> SemanticVersion | None:
        m = _VERSION_RE.match(text.strip())
        if not m:
            return None
        parts = [int(p) for p in m.group("numbers").split(".")]
        parts += [0] * (4 - len(parts))
        pre = tuple(m.group("pre").split(".")) if m.group("pre") else ()
        return cls(numbers=(parts[0], parts[1], parts[2], parts[3]), prerelease=pre)

    def sort_key(self) -> tuple:
        # A release sorts after every prerelease of the same numbers.
        if not self.prerelease:
            return (self.numbers, 1, ())
        return (self.numbers, 0, tuple(_identifier_key(p) for p in self.prerelease))


def _identifier_key(identifier: str) -> tuple[int, int, str]:
    # Numeric identifiers rank below alphanumeric ones; labels compare case-insensitively.
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier.lower())


class VersionResolver:
    """Detects packages requested at several versions and picks one."""

    def __init__(self, reporter: Reporter | None = None):
        self.reporter = reporter

    def detect_conflicts(self, version_map: VersionMap) -> list[str]:
        """Names with more than one distinct version, ascending."""
        return sorted(name for name, versions in version_map.items() if len(versions) > 1)

    def resolve_version(
        self,
        versions: Iterable[str],
        strategy: ConflictStrategy = ConflictStrategy.HIGHEST,
    ) -> str:
        """Pick one version from ``versions``.

        A single candidate is returned as given. Unparseable candidates are
        left out of the comparison (with a warning); if none parse, the first
        candidate wins. ``FAIL`` and ``INTERACTIVE`` resolve like ``HIGHEST``
        because the caller has already aborted or asked the user by then.
        """
        candidates = sorted(set(versions))
        if not candidates:
            raise ValueError("resolve_version needs at least one version")
        if len(candidates) == 1:
            return candidates[0]

        parsed: list[tuple[SemanticVersion, str]] = []
        for text in candidates:
            sv = SemanticVersion.parse(text)
            if sv is None:
                self._warn_unparseable(text)
                continue
            parsed.append((sv, text))
        if not parsed:
            return candidates[0]

        parsed.sort(key=lambda item: (item[0].sort_key(), item[1]))
        if strategy == ConflictStrategy.LOWEST:
            return parsed[0][1]
        return parsed[-1][1]

    def _warn_unparseable(self, text: str) -> None:
        log.warning("version.unparseable", version=text)
        if self.reporter is not None:
            self.reporter.warn(f"Could not parse version '{text}'; it was ignored during resolution.")

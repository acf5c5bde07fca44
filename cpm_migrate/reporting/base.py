"""Reporter protocol: all components talk to the user through this."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

from cpm_migrate.models.result import ConflictInfo


class ResolutionAction(Enum):
    USE_SUGGESTED = "use_suggested"
    USE_VERSION = "use_version"
    ABORT = "abort"


@dataclass(frozen=True)
class ConflictChoice:
    """What the user decided for one conflict. ``version`` is set for USE_VERSION."""

    action: ResolutionAction
    version: str | None = None


@runtime_checkable
class Reporter(Protocol):
    """Capability set the engine needs from a presentation layer.

    Components hand over plain data (messages, tables, previews) and never
    format for a particular terminal themselves.
    """

    def info(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def dim(self, message: str) -> None: ...

    def confirm(self, question: str, default: bool = False) -> bool: ...

    def choose(self, title: str, options: Sequence[str]) -> str: ...

    def choose_resolution(self, conflict: ConflictInfo, suggested: str) -> ConflictChoice: ...

    def render_table(
        self, title: str, headers: Sequence[str], rows: Sequence[Sequence[str]]
    ) -> None: ...

    def preview(self, title: str, text: str) -> None: ...

"""Test doubles for the reporting seam."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from cpm_migrate.models.result import ConflictInfo
from cpm_migrate.reporting.base import ConflictChoice, ResolutionAction


@dataclass
class RecordingReporter:
    """Reporter that records everything and answers prompts from queues.

    ``confirm_answers`` and ``resolutions`` are consumed front to back; when
    empty, confirm returns its default and conflicts take the suggested version.
    """

    confirm_answers: list[bool] = field(default_factory=list)
    resolutions: list[ConflictChoice] = field(default_factory=list)
    messages: list[tuple[str, str]] = field(default_factory=list)
    tables: list[tuple[str, list[str], list[list[str]]]] = field(default_factory=list)
    previews: list[tuple[str, str]] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def warn(self, message: str) -> None:
        self.messages.append(("warn", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def dim(self, message: str) -> None:
        self.messages.append(("dim", message))

    def confirm(self, question: str, default: bool = False) -> bool:
        self.questions.append(question)
        if self.confirm_answers:
            return self.confirm_answers.pop(0)
        return default

    def choose(self, title: str, options: Sequence[str]) -> str:
        self.questions.append(title)
        return options[0]

    def choose_resolution(self, conflict: ConflictInfo, suggested: str) -> ConflictChoice:
        self.questions.append(conflict.package)
        if self.resolutions:
            return self.resolutions.pop(0)
        return ConflictChoice(ResolutionAction.USE_SUGGESTED)

    def render_table(
        self, title: str, headers: Sequence[str], rows: Sequence[Sequence[str]]
    ) -> None:
        self.tables.append((title, list(headers), [list(r) for r in rows]))

    def preview(self, title: str, text: str) -> None:
        self.previews.append((title, text))

    # ── helpers ──

    def of_kind(self, kind: str) -> list[str]:
        return [m for k, m in self.messages if k == kind]

    @property
    def warnings(self) -> list[str]:
        return self.of_kind("warn")

    @property
    def errors(self) -> list[str]:
        return self.of_kind("error")

"""Phase tracking for a single migration run."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import structlog

log = structlog.get_logger(__name__)

PHASES = ("discover", "scan", "conflicts", "backup", "transform", "manifest", "gitignore")


@dataclass
class PhaseProgress:
    phase: str
    status: str = "pending"  # pending | running | completed | failed | skipped
    started_at: float | None = None
    finished_at: float | None = None
    detail: str = ""
    error: str | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is not None and self.finished_at is not None:
            return round(self.finished_at - self.started_at, 3)
        return None


class ProgressTracker:
    """Records phase transitions for one run."""

    def __init__(self) -> None:
        self.phases: list[PhaseProgress] = []
        self._by_name: dict[str, PhaseProgress] = {}

    def reset(self) -> None:
        self.phases.clear()
        self._by_name.clear()

    def start(self, phase: str) -> None:
        p = PhaseProgress(phase=phase, status="running", started_at=time.monotonic())
        self.phases.append(p)
        self._by_name[phase] = p
        self._notify(p)

    def complete(self, phase: str, detail: str = "") -> None:
        p = self._by_name.get(phase)
        if p is None:
            return
        p.status = "completed"
        p.finished_at = time.monotonic()
        p.detail = detail
        self._notify(p)

    def fail(self, phase: str, error: str) -> None:
        p = self._by_name.get(phase)
        if p is None:
            return
        p.status = "failed"
        p.finished_at = time.monotonic()
        p.error = error
        self._notify(p)

    def skip(self, phase: str, reason: str) -> None:
        p = PhaseProgress(phase=phase, status="skipped", detail=reason)
        self.phases.append(p)
        self._by_name[phase] = p
        self._notify(p)

    @property
    def current(self) -> PhaseProgress | None:
        running = [p for p in self.phases if p.status == "running"]
        return running[-1] if running else None

    def summary(self) -> dict[str, Any]:
        return {
            "phases": [
                {"phase": p.phase, "status": p.status, "duration": p.duration, "detail": p.detail, "error": p.error}
                for p in self.phases
            ],
            "total_duration": round(sum(p.duration or 0 for p in self.phases), 3),
        }

    def _notify(self, p: PhaseProgress) -> None:
        log.debug("phase." + p.status, phase=p.phase, detail=p.detail or None, error=p.error)

"""Tests for ProgressTracker."""

from __future__ import annotations

import time

from cpm_migrate.progress import PHASES, ProgressTracker


class TestProgressTracker:
    def test_basic_flow(self):
        tracker = ProgressTracker()
        tracker.start("discover")
        tracker.complete("discover", detail="2 project(s)")

        summary = tracker.summary()
        assert len(summary["phases"]) == 1
        assert summary["phases"][0]["status"] == "completed"
        assert summary["phases"][0]["detail"] == "2 project(s)"

    def test_fail(self):
        tracker = ProgressTracker()
        tracker.start("transform")
        tracker.fail("transform", "permission denied")

        summary = tracker.summary()
        assert summary["phases"][0]["status"] == "failed"
        assert summary["phases"][0]["error"] == "permission denied"

    def test_skip(self):
        tracker = ProgressTracker()
        tracker.skip("gitignore", "not requested")
        assert tracker.summary()["phases"][0]["status"] == "skipped"

    def test_duration(self):
        tracker = ProgressTracker()
        tracker.start("scan")
        time.sleep(0.01)
        tracker.complete("scan")

        p = tracker.phases[0]
        assert p.duration is not None
        assert p.duration >= 0.01

    def test_current(self):
        tracker = ProgressTracker()
        assert tracker.current is None
        tracker.start("backup")
        assert tracker.current.phase == "backup"
        tracker.complete("backup")
        assert tracker.current is None

    def test_unknown_phase_ignored(self):
        tracker = ProgressTracker()
        tracker.complete("never-started")
        assert tracker.phases == []

    def test_all_phases(self):
        tracker = ProgressTracker()
        for phase in PHASES:
            tracker.start(phase)
            tracker.complete(phase)

        summary = tracker.summary()
        assert [p["phase"] for p in summary["phases"]] == list(PHASES)
        assert summary["total_duration"] >= 0

    def test_reset(self):
        tracker = ProgressTracker()
        tracker.start("scan")
        tracker.reset()
        assert tracker.phases == []
        assert tracker.current is None
        tracker.complete("scan")
        assert tracker.phases == []

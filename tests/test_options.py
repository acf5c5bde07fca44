"""Tests for MigrationOptions validation."""

from __future__ import annotations

import pytest

from cpm_migrate.exceptions import ValidationError
from cpm_migrate.models.options import ConflictStrategy, MigrationOptions


class TestMode:
    def test_default_is_migrate(self):
        assert MigrationOptions().mode == "migrate"

    @pytest.mark.parametrize(
        "flag, mode",
        [
            ("rollback", "rollback"),
            ("analyze", "analyze"),
            ("list_backups", "list-backups"),
            ("prune_all", "prune-all"),
        ],
    )
    def test_flags(self, flag, mode):
        assert MigrationOptions(**{flag: True}).mode == mode


class TestValidate:
    def test_defaults_valid(self):
        MigrationOptions().validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"rollback": True, "analyze": True},
            {"analyze": True, "dry_run": True},
            {"rollback": True, "dry_run": True},
            {"no_backup": True, "add_gitignore": True},
            {"backup_dir": ""},
            {"add_gitignore": True, "gitignore_dir": ""},
            {"prune_backups": True},
            {"prune_backups": True, "retention": 0},
            {"scan_timeout": 0},
            {"batch_dir": ".", "rollback": True},
            {"batch_dir": ".", "project_dir": "App.csproj"},
            {"conflict_strategy": ConflictStrategy.INTERACTIVE},
        ],
    )
    def test_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            MigrationOptions(**kwargs).validate()

    def test_no_backup_needs_no_dir(self):
        MigrationOptions(no_backup=True, backup_dir="").validate()

    def test_interactive_strategy_in_batch(self):
        with pytest.raises(ValidationError) as exc_info:
            MigrationOptions(
                batch_dir=".", conflict_strategy=ConflictStrategy.INTERACTIVE, interactive=True
            ).validate()
        assert exc_info.value.remediation

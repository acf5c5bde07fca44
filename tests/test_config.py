"""Tests for .cpm-migrate.json loading and merging."""

from __future__ import annotations

import json

from cpm_migrate.config import (
    CONFIG_FILE_NAME,
    ConfigModel,
    create_sample_config,
    discover_config,
    load_config,
    merge_config,
    parse_config,
)
from cpm_migrate.models.options import ConflictStrategy, MigrationOptions, OutputFormat


class TestDiscoverConfig:
    def test_found_in_parent(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text("{}")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert discover_config(str(nested)) == str(tmp_path / CONFIG_FILE_NAME)

    def test_nearest_wins(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text("{}")
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / CONFIG_FILE_NAME).write_text("{}")
        assert discover_config(str(tmp_path / "a")) == str(tmp_path / "a" / CONFIG_FILE_NAME)


class TestParseConfig:
    def test_camel_case_and_case_insensitive_enums(self, tmp_path, reporter):
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text(
            json.dumps(
                {
                    "conflictStrategy": "Lowest",
                    "backup": False,
                    "outputFormat": "JSON",
                    "retention": {"enabled": True, "maxBackups": 3},
                    "excludeDirectories": ["vendor"],
                    "somethingNew": 1,
                }
            )
        )
        config = parse_config(str(path), reporter)
        assert config.conflict_strategy == ConflictStrategy.LOWEST
        assert config.output_format == OutputFormat.JSON
        assert config.retention.max_backups == 3
        assert any("Loaded config" in m for m in reporter.of_kind("dim"))

    def test_invalid_json_warns(self, tmp_path, reporter):
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text("{ nope")
        assert parse_config(str(path), reporter) is None
        assert reporter.warnings

    def test_undecodable_file_warns(self, tmp_path, reporter):
        path = tmp_path / CONFIG_FILE_NAME
        path.write_bytes(b"\xff\xfe{}")
        assert parse_config(str(path), reporter) is None
        assert reporter.warnings

    def test_byte_order_mark_accepted(self, tmp_path):
        path = tmp_path / CONFIG_FILE_NAME
        path.write_bytes(b"\xef\xbb\xbf{\"mergeExisting\": true}")
        assert parse_config(str(path)).merge_existing

    def test_invalid_value_warns(self, tmp_path, reporter):
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text(json.dumps({"retention": {"enabled": True, "maxBackups": 0}}))
        assert parse_config(str(path), reporter) is None

    def test_load_walks_up(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text(json.dumps({"mergeExisting": True}))
        (tmp_path / "src").mkdir()
        assert load_config(str(tmp_path / "src")).merge_existing


class TestMergeConfig:
    def test_fills_unset_options(self):
        config = ConfigModel(
            conflict_strategy=ConflictStrategy.FAIL,
            backup=False,
            keep_version_attributes=True,
            exclude_directories=["vendor"],
        )
        options = merge_config(MigrationOptions(), config)
        assert options.conflict_strategy == ConflictStrategy.FAIL
        assert options.no_backup
        assert options.keep_attributes
        assert options.exclude_dirs == ["vendor"]

    def test_explicit_options_win(self):
        config = ConfigModel(conflict_strategy=ConflictStrategy.FAIL, backup_dir="/elsewhere")
        options = merge_config(
            MigrationOptions(conflict_strategy=ConflictStrategy.LOWEST, backup_dir="/here"),
            config,
            explicit={"conflict_strategy", "backup_dir"},
        )
        assert options.conflict_strategy == ConflictStrategy.LOWEST
        assert options.backup_dir == "/here"

    def test_retention_only_when_enabled(self):
        disabled = ConfigModel.model_validate({"retention": {"enabled": False, "maxBackups": 2}})
        assert merge_config(MigrationOptions(), disabled).retention is None
        enabled = ConfigModel.model_validate({"retention": {"enabled": True, "maxBackups": 2}})
        assert merge_config(MigrationOptions(), enabled).retention == 2


class TestSampleConfig:
    def test_sample_round_trips(self, tmp_path):
        path = tmp_path / CONFIG_FILE_NAME
        create_sample_config(str(path))
        raw = json.loads(path.read_text())
        assert raw["conflictStrategy"] == "highest"
        assert raw["retention"] == {"enabled": True, "maxBackups": 5}
        assert parse_config(str(path)) is not None

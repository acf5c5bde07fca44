"""``.cpm-migrate.json`` discovery, parsing and merging into options."""

from __future__ import annotations

import os

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cpm_migrate.models.options import ConflictStrategy, MigrationOptions, OutputFormat
from cpm_migrate.reporting.base import Reporter

log = structlog.get_logger(__name__)

CONFIG_FILE_NAME = ".cpm-migrate.json"


class RetentionConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    max_backups: int = Field(default=5, ge=1)


class ConfigModel(BaseModel):
    """Project-level defaults. Every field is optional; unknown keys are ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    conflict_strategy: ConflictStrategy | None = None
    backup: bool | None = None
    backup_dir: str | None = None
    add_gitignore: bool | None = None
    keep_version_attributes: bool | None = None
    merge_existing: bool | None = None
    output_format: OutputFormat | None = None
    retention: RetentionConfig | None = None
    exclude_directories: list[str] | None = None

    @field_validator("conflict_strategy", "output_format", mode="before")
    @classmethod
    def _lowercase(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v


def discover_config(start_dir: str) -> str | None:
    """Nearest config file in ``start_dir`` or any parent."""
    directory = os.path.abspath(start_dir)
    while True:
        candidate = os.path.join(directory, CONFIG_FILE_NAME)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(directory)
        if parent == directory:
            return None
        directory = parent


def parse_config(path: str, reporter: Reporter | None = None) -> ConfigModel | None:
    try:
        with open(path, encoding="utf-8-sig") as f:
            config = ConfigModel.model_validate_json(f.read())
    except (OSError, UnicodeDecodeError, pydantic.ValidationError) as e:
        log.warning("config.invalid", path=path, error=str(e))
        if reporter is not None:
            reporter.warn(f"Failed to load config file {path}: {e}")
        return None
    if reporter is not None:
        reporter.dim(f"Loaded config from: {path}")
    return config


def load_config(start_dir: str, reporter: Reporter | None = None) -> ConfigModel | None:
    path = discover_config(start_dir)
    return parse_config(path, reporter) if path else None


def merge_config(
    options: MigrationOptions, config: ConfigModel, explicit: set[str] | frozenset[str] = frozenset()
) -> MigrationOptions:
    """Fill ``options`` from ``config`` where the option was not set explicitly.

    ``explicit`` holds MigrationOptions field names given on the command line.
    """
    if config.conflict_strategy is not None and "conflict_strategy" not in explicit:
        options.conflict_strategy = config.conflict_strategy
    if config.backup is not None and "no_backup" not in explicit:
        options.no_backup = not config.backup
    if config.backup_dir and "backup_dir" not in explicit:
        options.backup_dir = config.backup_dir
    if config.add_gitignore is not None and "add_gitignore" not in explicit:
        options.add_gitignore = config.add_gitignore
    if config.keep_version_attributes is not None and "keep_attributes" not in explicit:
        options.keep_attributes = config.keep_version_attributes
    if config.merge_existing is not None and "merge_existing" not in explicit:
        options.merge_existing = config.merge_existing
    if config.output_format is not None and "output_format" not in explicit:
        options.output_format = config.output_format
    if config.retention is not None and config.retention.enabled and "retention" not in explicit:
        options.retention = config.retention.max_backups
    if config.exclude_directories and "exclude_dirs" not in explicit:
        options.exclude_dirs = list(config.exclude_directories)
    return options


def create_sample_config(path: str) -> None:
    sample = ConfigModel(
        conflict_strategy=ConflictStrategy.HIGHEST,
        backup=True,
        backup_dir=".",
        add_gitignore=True,
        keep_version_attributes=False,
        merge_existing=False,
        output_format=OutputFormat.TERMINAL,
        retention=RetentionConfig(enabled=True, max_backups=5),
        exclude_directories=["node_modules", "bin", "obj", ".git", "packages"],
    )
    with open(path, "w", encoding="utf-8") as f:
        f.write(sample.model_dump_json(by_alias=True, indent=2) + "\n")

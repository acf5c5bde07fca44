"""User-facing output: the Reporter protocol and its terminal implementation."""

from cpm_migrate.reporting.base import ConflictChoice, Reporter, ResolutionAction

__all__ = ["ConflictChoice", "Reporter", "ResolutionAction"]

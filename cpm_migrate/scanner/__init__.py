"""Project file scanning and transitive dependency listing."""

from cpm_migrate.scanner.project_file import ProjectFileScanner
from cpm_migrate.scanner.transitive import TransitiveScanner, parse_transitive_output

__all__ = ["ProjectFileScanner", "TransitiveScanner", "parse_transitive_output"]

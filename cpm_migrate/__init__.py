"""cpm-migrate: move .NET project trees to Central Package Management."""

__version__ = "0.1.0"

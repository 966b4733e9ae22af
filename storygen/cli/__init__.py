"""Command-line interface for storygen."""

from storygen.cli.commands import app

__all__ = ["app"]

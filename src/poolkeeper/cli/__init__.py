"""Command-line interface for poolkeeper."""

from ._app import app, create_app, format_command, main

__all__ = ["app", "create_app", "format_command", "main"]

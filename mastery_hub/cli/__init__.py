"""Command-line interface."""

from mastery_hub.cli.main import app, run

__all__ = ["app", "run"]

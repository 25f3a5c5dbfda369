"""Command-line interface registration for a Flask host application."""

from __future__ import annotations

from flask import Flask

from .tokens import tokens_cli


def init_app(app: Flask) -> None:
    """Register the token command group.

    Parameters
    ----------
    app:
        Flask application instance whose CLI registry will receive the
        ``tokens`` command group.
    """
    app.cli.add_command(tokens_cli)

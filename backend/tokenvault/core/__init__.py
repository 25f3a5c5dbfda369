"""Ambient stack: configuration, logging, identifiers and Flask host wiring."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import redis  # type: ignore[import-untyped]
    from flask import Flask


def init_app(app: Flask, client: redis.Redis | None = None) -> None:
    """Wire logging, the token manager, error handlers and the CLI into ``app``."""
    # deferred: the engines import tokenvault.core.ids
    from tokenvault import cli
    from tokenvault.core import errors, extensions, logger

    logger.configure_logging(
        app.config.get("LOG_LEVEL", "INFO"), json_lines=app.config.get("LOG_JSON", True)
    )
    extensions.init_app(app, client=client)
    logger.init_app(app)
    errors.init_app(app)
    cli.init_app(app)

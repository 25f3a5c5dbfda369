"""Application factory for a minimal Flask host (CLI and tests)."""

from __future__ import annotations

import redis  # type: ignore[import-untyped]
from flask import Flask

from tokenvault.core.config import BaseConfig, get_config


def create_app(
    config: str | type[BaseConfig] | object | None = None,
    *,
    redis_client: redis.Redis | None = None,
) -> Flask:
    """Build a Flask app with the token manager, error handlers and CLI wired in.

    ``flask --app tokenvault.factory tokens ...`` uses this factory.
    """

    app = Flask(__name__)
    app.config.from_object(get_config() if config is None else config)

    from tokenvault.core import init_app

    init_app(app, client=redis_client)
    return app

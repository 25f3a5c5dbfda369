"""Flask extension wiring: Redis client, token manager and signed-token codec."""

from __future__ import annotations

import redis  # type: ignore[import-untyped]
from flask import Flask, current_app
from redis.exceptions import RedisError  # type: ignore[import-untyped]

from tokenvault.infra.signed.signed_token import SignedTokenCodec
from tokenvault.services.manager.dto import ManagerOptions
from tokenvault.services.manager.service import TokenManager

EXTENSION_KEY = "tokenvault"
SIGNED_EXTENSION_KEY = "tokenvault.signed"


def init_app(app: Flask, client: redis.Redis | None = None) -> TokenManager:
    """Build the token manager for ``app`` and register it in ``app.extensions``.

    Parameters
    ----------
    app: flask.Flask
        Application whose ``REDIS_URL`` and ``TOKEN_*`` settings are used.
    client: redis.Redis, optional
        Ready client (e.g. ``fakeredis`` in tests). When omitted one is built
        from ``REDIS_URL`` with socket timeouts equal to the operation timeout.

    Raises
    ------
    RuntimeError
        If Redis cannot be reached at startup.
    tokenvault.services._shared.errors.ConfigurationError
        If the token settings are invalid.
    """
    options = ManagerOptions.from_mapping(app.config)
    redis_url = app.config.get("REDIS_URL")
    if client is None:
        if not redis_url:
            raise RuntimeError("REDIS_URL is not configured.")
        client = redis.Redis.from_url(
            redis_url,
            socket_timeout=options.operation_timeout,
            socket_connect_timeout=options.operation_timeout,
        )
    try:
        client.ping()
    except RedisError as exc:
        raise RuntimeError(f"Failed to connect to Redis at {redis_url!r}") from exc

    manager = TokenManager(client, options)
    app.extensions[EXTENSION_KEY] = manager

    secret = app.config.get("SIGNED_TOKEN_SECRET")
    if secret:
        app.extensions[SIGNED_EXTENSION_KEY] = SignedTokenCodec(secret)
    else:
        app.extensions.pop(SIGNED_EXTENSION_KEY, None)
    return manager


def get_manager(app: Flask | None = None) -> TokenManager:
    """Return the token manager of ``app`` (the current app by default)."""
    app = app or current_app
    manager = app.extensions.get(EXTENSION_KEY)
    if manager is None:
        raise RuntimeError("Token manager is not initialized. Call init_app() first.")
    return manager


def get_signed_codec(app: Flask | None = None) -> SignedTokenCodec:
    """Return the signed-token codec; requires ``SIGNED_TOKEN_SECRET``."""
    app = app or current_app
    codec = app.extensions.get(SIGNED_EXTENSION_KEY)
    if codec is None:
        raise RuntimeError("Signed tokens are disabled. Set SIGNED_TOKEN_SECRET.")
    return codec

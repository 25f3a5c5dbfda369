"""Environment-driven settings for the token manager and its Flask host."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Final

from dotenv import load_dotenv

# 'development' | 'testing' | 'production'
ENV_VAR: Final[str] = "TOKENVAULT_ENV"
_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})


# Loads .env when present (no-op otherwise)
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Read an on/off switch such as ``LOG_JSON`` or ``FLASK_DEBUG``.

    ``1``, ``true``, ``yes``, ``y`` and ``on`` (any case) switch it on, any
    other value switches it off, and ``default`` applies when unset.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def env_int(name: str, default: int) -> int:
    """Parse an integer from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: int
        Value returned when the variable is unset or blank.

    Raises
    ------
    ValueError
        If the variable is set to something that is not an integer. A typo
        in a TTL must not silently fall back to the default.
    """
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {val!r}") from exc


class BaseConfig:
    """Settings every environment starts from.

    Attributes
    ----------
    REDIS_URL: str
        Connection URL of the backing Redis.
    LOG_LEVEL: str
        Root logging verbosity (``INFO`` by default).
    LOG_JSON: bool
        JSON log lines (default) or plain text for local use.
    TOKEN_ACCESS_TTL: int
        Access token (and chained token) lifetime in seconds.
    TOKEN_ACCESS_KEY_PREFIX: str
        Key namespace of access tokens.
    TOKEN_REFRESH_TTL: int
        Refresh token lifetime in seconds; must exceed ``TOKEN_ACCESS_TTL``.
    TOKEN_REFRESH_KEY_PREFIX: str
        Key namespace of refresh tokens.
    TOKEN_KEY_PREFIX: str
        Key namespace of chained tokens.
    TOKEN_OPERATION_TIMEOUT: int
        Per-operation budget in seconds.
    TOKEN_REFRESH_LIMIT: int
        Default refresh limit of chained tokens (``0`` unlimited, ``-1`` none).
    TOKEN_ROTATION: str
        ``reusable`` or ``one_shot`` refresh tokens.
    TOKEN_MODE: str
        ``pair`` (access + refresh) or ``chained`` (single token with child).
    TOKEN_MAX_WATCH_RETRIES: int
        Extra attempts after a concurrent modification.
    SIGNED_TOKEN_SECRET: str
        HMAC key of stateless signed tokens (empty disables them).
    DEBUG: bool
        Toggles Flask debug mode.
    TESTING: bool
        Enables Flask testing mode when ``True``.

    Notes
    -----
    Each value is read from the environment variable of the same name when
    the module is imported. The ``TOKEN_*`` keys feed
    :meth:`tokenvault.services.manager.dto.ManagerOptions.from_mapping`.
    """

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = env_bool("LOG_JSON", True)

    # Token lifecycle
    TOKEN_ACCESS_TTL = env_int("TOKEN_ACCESS_TTL", 900)
    TOKEN_ACCESS_KEY_PREFIX = os.getenv("TOKEN_ACCESS_KEY_PREFIX", "token:access:")
    TOKEN_REFRESH_TTL = env_int("TOKEN_REFRESH_TTL", 604800)
    TOKEN_REFRESH_KEY_PREFIX = os.getenv("TOKEN_REFRESH_KEY_PREFIX", "token:refresh:")
    TOKEN_KEY_PREFIX = os.getenv("TOKEN_KEY_PREFIX", "token:")
    TOKEN_OPERATION_TIMEOUT = env_int("TOKEN_OPERATION_TIMEOUT", 10)
    TOKEN_REFRESH_LIMIT = env_int("TOKEN_REFRESH_LIMIT", 0)
    TOKEN_ROTATION = os.getenv("TOKEN_ROTATION", "reusable")
    TOKEN_MODE = os.getenv("TOKEN_MODE", "pair")
    TOKEN_MAX_WATCH_RETRIES = env_int("TOKEN_MAX_WATCH_RETRIES", 5)

    SIGNED_TOKEN_SECRET = os.getenv("SIGNED_TOKEN_SECRET", "")

    # Flask built-ins
    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    """Local development: debug on, verbose plain-text logs."""

    DEBUG = env_bool("FLASK_DEBUG", True)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
    LOG_JSON = env_bool("LOG_JSON", False)


class TestingConfig(BaseConfig):
    """Test runs against fake Redis or a scratch database.

    Notes
    -----
    - ``TESTING`` is forced on.
    - Short TTLs and a dedicated key namespace so test data is easy to
      spot in a shared Redis.
    """

    TESTING = True
    DEBUG = False
    REDIS_URL = os.getenv("TEST_REDIS_URL", "redis://localhost:6379/15")
    TOKEN_ACCESS_TTL = 60
    TOKEN_REFRESH_TTL = 1200
    TOKEN_ACCESS_KEY_PREFIX = "test:access:"
    TOKEN_REFRESH_KEY_PREFIX = "test:refresh:"
    TOKEN_KEY_PREFIX = "test:token:"
    SIGNED_TOKEN_SECRET = "test-secret"


class ProductionConfig(BaseConfig):
    """Deployed services; ``REDIS_URL`` and ``SIGNED_TOKEN_SECRET`` come from the environment."""

    DEBUG = False


# TOKENVAULT_ENV value -> settings class
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Pick the settings class named by ``TOKENVAULT_ENV`` (case-insensitive).

    Unset or unrecognised names select :class:`DevelopmentConfig`. The result
    is meant for :meth:`flask.Config.from_object` or :func:`as_mapping`.
    """
    name = os.getenv(ENV_VAR, "").strip().lower() or "development"
    return CONFIG_MAP.get(name, DevelopmentConfig)


def as_mapping(config: type[BaseConfig]) -> dict[str, object]:
    """Return the upper-case settings of a config class as a plain dict."""
    return {key: getattr(config, key) for key in dir(config) if key.isupper()}

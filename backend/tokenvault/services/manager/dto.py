# tokenvault/services/manager/dto.py
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from tokenvault.core import ids
from tokenvault.models.access_token import AccessToken
from tokenvault.models.refresh_token import RefreshToken
from tokenvault.services._shared.errors import ConfigurationError
from tokenvault.services.refresh.dto import RotationPolicy


class CredentialMode(str, Enum):
    """Credential shape served by a manager."""

    PAIR = "pair"  # access token + refresh token
    CHAINED = "chained"  # single token with an optional child


# ---------------------------- Configuration -------------------------------- #


@dataclass(frozen=True, slots=True)
class ManagerOptions:
    """
    Token manager configuration.

    :param access_token_ttl: Access token lifetime in seconds (also the
        default lifetime of chained tokens).
    :type access_token_ttl: int
    :param access_token_key_prefix: Key namespace of access tokens.
    :type access_token_key_prefix: str
    :param refresh_token_ttl: Refresh token lifetime in seconds; must exceed
        ``access_token_ttl``.
    :type refresh_token_ttl: int
    :param refresh_token_key_prefix: Key namespace of refresh tokens.
    :type refresh_token_key_prefix: str
    :param key_prefix: Key namespace of chained tokens.
    :type key_prefix: str
    :param operation_timeout: Per-operation budget in seconds (>= 1).
    :type operation_timeout: int
    :param refresh_limit: Default refresh limit of chained tokens
        (``0`` unlimited, ``-1`` disabled, ``>0`` capped).
    :type refresh_limit: int
    :param rotation: Exchange policy of refresh tokens.
    :type rotation: RotationPolicy
    :param mode: Credential shape.
    :type mode: CredentialMode
    :param make_token_func: Token value generator.
    :type make_token_func: Callable[[], str]
    :param check_token_func: Token value well-formedness check.
    :type check_token_func: Callable[[str], bool]
    :param max_watch_retries: Extra attempts after a concurrent modification.
    :type max_watch_retries: int
    """

    access_token_ttl: int = 900
    access_token_key_prefix: str = "token:access:"
    refresh_token_ttl: int = 604800
    refresh_token_key_prefix: str = "token:refresh:"
    key_prefix: str = "token:"
    operation_timeout: int = 10
    refresh_limit: int = 0
    rotation: RotationPolicy = RotationPolicy.REUSABLE
    mode: CredentialMode = CredentialMode.PAIR
    make_token_func: Callable[[], str] = field(default=ids.generate)
    check_token_func: Callable[[str], bool] = field(default=ids.is_well_formed)
    max_watch_retries: int = 5

    def validate(self) -> ManagerOptions:
        """
        Check every option eagerly.

        :returns: The options with enum fields normalized.
        :raises ConfigurationError: On the first invalid option.
        """
        try:
            rotation = RotationPolicy(self.rotation)
            mode = CredentialMode(self.mode)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        _positive("operation_timeout", self.operation_timeout)
        _positive("access_token_ttl", self.access_token_ttl)
        if not callable(self.make_token_func):
            raise ConfigurationError("make_token_func must be callable")
        if not callable(self.check_token_func):
            raise ConfigurationError("check_token_func must be callable")
        if not _is_int(self.refresh_limit) or self.refresh_limit < -1:
            raise ConfigurationError("refresh_limit must be an integer >= -1")
        if not _is_int(self.max_watch_retries) or self.max_watch_retries < 0:
            raise ConfigurationError("max_watch_retries must be an integer >= 0")

        if mode is CredentialMode.PAIR:
            _positive("refresh_token_ttl", self.refresh_token_ttl)
            if self.refresh_token_ttl <= self.access_token_ttl:
                raise ConfigurationError("refresh_token_ttl must exceed access_token_ttl")
            if not self.access_token_key_prefix or not self.refresh_token_key_prefix:
                raise ConfigurationError("token key prefixes must not be empty")
            if self.access_token_key_prefix == self.refresh_token_key_prefix:
                raise ConfigurationError("access and refresh tokens need distinct key prefixes")
        elif not self.key_prefix:
            raise ConfigurationError("key_prefix must not be empty")

        return replace(self, rotation=rotation, mode=mode)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> ManagerOptions:
        """
        Build options from ``TOKEN_*`` keys (Flask config or environment-style dict).

        Missing keys keep their defaults; string numbers are accepted.

        :raises ConfigurationError: If a numeric key is not an integer.
        """
        kwargs: dict[str, Any] = {}
        for key, name in _INT_KEYS.items():
            if config.get(key) not in (None, ""):
                kwargs[name] = _to_int(key, config[key])
        for key, name in _STR_KEYS.items():
            if config.get(key) is not None:
                kwargs[name] = str(config[key])
        if config.get("TOKEN_ROTATION"):
            kwargs["rotation"] = str(config["TOKEN_ROTATION"]).lower()
        if config.get("TOKEN_MODE"):
            kwargs["mode"] = str(config["TOKEN_MODE"]).lower()
        return cls(**kwargs).validate()


_INT_KEYS = {
    "TOKEN_ACCESS_TTL": "access_token_ttl",
    "TOKEN_REFRESH_TTL": "refresh_token_ttl",
    "TOKEN_OPERATION_TIMEOUT": "operation_timeout",
    "TOKEN_REFRESH_LIMIT": "refresh_limit",
    "TOKEN_MAX_WATCH_RETRIES": "max_watch_retries",
}
_STR_KEYS = {
    "TOKEN_ACCESS_KEY_PREFIX": "access_token_key_prefix",
    "TOKEN_REFRESH_KEY_PREFIX": "refresh_token_key_prefix",
    "TOKEN_KEY_PREFIX": "key_prefix",
}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _positive(name: str, value: Any) -> None:
    if not _is_int(value) or value < 1:
        raise ConfigurationError(f"{name} must be an integer >= 1")


def _to_int(key: str, raw: Any) -> int:
    if _is_int(raw):
        return int(raw)
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPair:
    """
    Access token issued together with the refresh token bound to it.

    :param access: The access token.
    :type access: AccessToken
    :param refresh: The refresh token.
    :type refresh: RefreshToken
    """

    access: AccessToken
    refresh: RefreshToken

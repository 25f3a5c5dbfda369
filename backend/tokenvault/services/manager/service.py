# tokenvault/services/manager/service.py
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import redis  # type: ignore[import-untyped]

from tokenvault.infra.redis.record_store import RedisRecordStore
from tokenvault.models.access_token import AccessToken
from tokenvault.models.refresh_token import RefreshToken
from tokenvault.models.token import MetaData, Token
from tokenvault.services._shared.errors import ConfigurationError, TokenError, ValidationError
from tokenvault.services.access.service import AccessTokenEngine
from tokenvault.services.chain.service import ChainedTokenEngine
from tokenvault.services.manager.dto import CredentialMode, ManagerOptions, TokenPair
from tokenvault.services.refresh.service import RefreshTokenEngine

log = logging.getLogger(__name__)


class TokenManager:
    """
    Token lifecycle facade bound to one configuration and one Redis namespace.

    Responsibilities
    ----------------
    * Validate :class:`ManagerOptions` eagerly (construction fails fast).
    * Build the engines of the configured credential shape on a shared
      :class:`RedisRecordStore`.
    * Expose a generic surface (``issue`` / ``parse`` / ``revoke``) plus the
      explicit per-shape operations.

    Notes
    -----
    - The manager is stateless apart from its configuration; instances are
      safe to share between threads (redis-py clients are thread-safe).
    - Errors propagate unchanged from the engines.
    """

    def __init__(
        self,
        client: redis.Redis | None,
        options: ManagerOptions | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """
        :param client: Redis client shared by every engine.
        :param options: Configuration; defaults to :class:`ManagerOptions()`.
        :param clock: Wall clock (Unix seconds) used for record metadata.
        :raises ConfigurationError: If the client is missing or an option is invalid.
        """
        if client is None:
            raise ConfigurationError("a Redis client is required")
        self.options = (options or ManagerOptions()).validate()
        self.client = client
        self._owns_client = False

        opts = self.options
        self.store = RedisRecordStore(
            client,
            timeout=float(opts.operation_timeout),
            max_watch_retries=opts.max_watch_retries,
        )
        hooks: dict[str, Any] = {
            "make_token": opts.make_token_func,
            "check_token": opts.check_token_func,
            "clock": clock,
        }

        self._access: AccessTokenEngine | None = None
        self._refresh: RefreshTokenEngine | None = None
        self._chain: ChainedTokenEngine | None = None
        if opts.mode is CredentialMode.PAIR:
            self._access = AccessTokenEngine(
                self.store, opts.access_token_key_prefix, ttl=opts.access_token_ttl, **hooks
            )
            self._refresh = RefreshTokenEngine(
                self.store,
                opts.refresh_token_key_prefix,
                ttl=opts.refresh_token_ttl,
                access=self._access,
                rotation=opts.rotation,
                **hooks,
            )
        else:
            self._chain = ChainedTokenEngine(
                self.store,
                opts.key_prefix,
                ttl=opts.access_token_ttl,
                refresh_limit=opts.refresh_limit,
                **hooks,
            )
        log.debug(
            "Token manager ready: mode=%s timeout=%ss", opts.mode.value, opts.operation_timeout
        )

    # ------------------------------------------------------------------ #
    # Construction helpers
    # ------------------------------------------------------------------ #

    @classmethod
    def from_url(
        cls,
        url: str,
        options: ManagerOptions | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> TokenManager:
        """
        Build a manager that owns its Redis client.

        Socket timeouts are set to the operation timeout so a stalled server
        surfaces as :class:`OperationTimeoutError` instead of blocking.
        """
        opts = (options or ManagerOptions()).validate()
        client = redis.Redis.from_url(
            url,
            socket_timeout=opts.operation_timeout,
            socket_connect_timeout=opts.operation_timeout,
        )
        manager = cls(client, opts, clock=clock)
        manager._owns_client = True
        return manager

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        client: redis.Redis | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> TokenManager:
        """
        Build a manager from a config mapping (``REDIS_URL`` + ``TOKEN_*`` keys).

        :raises ConfigurationError: If no client is given and ``REDIS_URL`` is unset.
        """
        opts = ManagerOptions.from_mapping(config)
        if client is not None:
            return cls(client, opts, clock=clock)
        url = config.get("REDIS_URL")
        if not url:
            raise ConfigurationError("REDIS_URL is not configured")
        return cls.from_url(url, opts, clock=clock)

    def close(self) -> None:
        """Release the Redis connection pool when the manager created it."""
        if self._owns_client:
            self.client.close()

    # ------------------------------------------------------------------ #
    # Engines
    # ------------------------------------------------------------------ #

    @property
    def mode(self) -> CredentialMode:
        return self.options.mode

    @property
    def access(self) -> AccessTokenEngine:
        """:raises ConfigurationError: Outside ``PAIR`` mode."""
        if self._access is None:
            raise ConfigurationError("access tokens are only available in pair mode")
        return self._access

    @property
    def refresh(self) -> RefreshTokenEngine:
        """:raises ConfigurationError: Outside ``PAIR`` mode."""
        if self._refresh is None:
            raise ConfigurationError("refresh tokens are only available in pair mode")
        return self._refresh

    @property
    def chain(self) -> ChainedTokenEngine:
        """:raises ConfigurationError: Outside ``CHAINED`` mode."""
        if self._chain is None:
            raise ConfigurationError("chained tokens are only available in chained mode")
        return self._chain

    # ------------------------------------------------------------------ #
    # Generic surface
    # ------------------------------------------------------------------ #

    def issue(
        self, payload: Mapping[str, Any] | None = None, meta: MetaData | None = None
    ) -> TokenPair | Token:
        """
        Issue a credential of the configured shape.

        ``PAIR`` returns a :class:`TokenPair` (``meta.ttl``, when set, is the
        access token lifetime); ``CHAINED`` returns a :class:`Token`.
        """
        if self.mode is CredentialMode.PAIR:
            ttl = meta.ttl if meta is not None else None
            return self.issue_token_pair(payload, access_ttl=ttl)
        return self.make_token(meta, payload)

    def parse(self, value: str) -> AccessToken | Token:
        """Parse the bearer credential: an access token (``PAIR``) or a token (``CHAINED``)."""
        if self.mode is CredentialMode.PAIR:
            return self.parse_access_token(value)
        return self.parse_token(value)

    def revoke(self, value: str, cascade: bool = False) -> None:
        """
        Revoke the bearer credential ``value`` (idempotent).

        :param cascade: Also delete the child token (``CHAINED`` only).
        :raises ValidationError: If ``cascade`` is requested in ``PAIR`` mode.
        """
        if self.mode is CredentialMode.PAIR:
            if cascade:
                raise ValidationError("cascade applies to chained tokens only")
            self.revoke_access_token(value)
            return
        self.destroy_token(value, cascade=cascade)

    # ------------------------------------------------------------------ #
    # Access tokens
    # ------------------------------------------------------------------ #

    def issue_access_token(
        self, payload: Mapping[str, Any] | None = None, ttl: int | None = None
    ) -> AccessToken:
        return self.access.issue(payload, ttl)

    def parse_access_token(self, value: str) -> AccessToken:
        return self.access.parse(value)

    def refresh_access_token(self, token: AccessToken | str) -> AccessToken:
        """Refresh an access token given as entity or value; returns the updated entity."""
        entity = token if isinstance(token, AccessToken) else self.access.parse(token)
        self.access.refresh(entity)
        return entity

    def revoke_access_token(self, value: str) -> None:
        self.access.destroy(value)

    # ------------------------------------------------------------------ #
    # Refresh tokens
    # ------------------------------------------------------------------ #

    def issue_refresh_token(
        self,
        access_token: AccessToken | str,
        payload: Mapping[str, Any] | None = None,
        ttl: int | None = None,
    ) -> RefreshToken:
        return self.refresh.issue(access_token, payload, ttl)

    def parse_refresh_token(self, value: str) -> RefreshToken:
        return self.refresh.parse(value)

    def exchange(
        self,
        refresh_token: RefreshToken | str,
        payload: Mapping[str, Any] | None = None,
        *,
        expected_access_token: str | None = None,
    ) -> AccessToken:
        """
        Redeem a refresh token (entity or value) for a new access token.

        A passed entity is updated in place (binding, use count, and under
        one-shot rotation its value).
        """
        entity = (
            refresh_token
            if isinstance(refresh_token, RefreshToken)
            else self.refresh.parse(refresh_token)
        )
        return self.refresh.exchange(entity, payload, expected_access_token=expected_access_token)

    def revoke_refresh_token(self, value: str, *, also_access_token: bool = True) -> None:
        self.refresh.destroy(value, also_access_token=also_access_token)

    def issue_token_pair(
        self,
        payload: Mapping[str, Any] | None = None,
        *,
        access_ttl: int | None = None,
        refresh_ttl: int | None = None,
    ) -> TokenPair:
        """
        Issue an access token and a refresh token bound to it.

        The two records are written by separate transactions; if the refresh
        token cannot be issued the access token is revoked before re-raising.

        :raises ValidationError: If ``access_ttl`` does not stay below the refresh ttl.
        """
        access_ttl = self.access.check_ttl(self.access.ttl if access_ttl is None else access_ttl)
        refresh_ttl = self.refresh.check_ttl(
            self.refresh.ttl if refresh_ttl is None else refresh_ttl
        )
        if access_ttl >= refresh_ttl:
            raise ValidationError("refresh token ttl must exceed the access token ttl")

        access = self.access.issue(payload, access_ttl)
        try:
            refresh = self.refresh.issue(access, payload, refresh_ttl)
        except TokenError:
            log.warning(
                "Token pair incomplete, revoking access token: value=%s",
                self.access.redact(access.value),
            )
            try:
                self.access.delete(access.value)
            except TokenError:
                log.error(
                    "Access token rollback failed: value=%s",
                    self.access.redact(access.value),
                    exc_info=True,
                )
            raise
        return TokenPair(access=access, refresh=refresh)

    # ------------------------------------------------------------------ #
    # Chained tokens
    # ------------------------------------------------------------------ #

    def make_token(
        self, meta: MetaData | None = None, payload: Mapping[str, Any] | None = None
    ) -> Token:
        return self.chain.issue(meta, payload)

    def parse_token(self, value: str) -> Token:
        return self.chain.parse(value)

    def destroy_token(self, value: str, *, cascade: bool = False) -> None:
        self.chain.destroy(value, cascade=cascade)

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from tokenvault.models.base import BaseToken

if TYPE_CHECKING:
    from tokenvault.models.access_token import AccessToken
    from tokenvault.services.refresh.service import RefreshTokenEngine


class RefreshToken(BaseToken):
    """
    Long-lived credential redeemable for a fresh :class:`AccessToken`.

    :ivar access_token: Value of the access token it currently authorizes.
    :ivar created_at: Issue time (Unix seconds).
    :ivar ttl: Lifetime in seconds.
    :ivar expires_at: ``created_at + ttl``.
    :ivar use_count: Successful exchanges so far.
    :ivar used_at: Last exchange time, ``0`` if never used.
    """

    _engine: RefreshTokenEngine

    def __init__(
        self,
        engine: RefreshTokenEngine,
        value: str,
        payload: dict[str, str],
        *,
        access_token: str,
        created_at: int,
        ttl: int,
        expires_at: int,
        use_count: int = 0,
        used_at: int = 0,
    ) -> None:
        super().__init__(engine, value, payload)
        self.access_token = access_token
        self.created_at = created_at
        self.ttl = ttl
        self.expires_at = expires_at
        self.use_count = use_count
        self.used_at = used_at

    def exchange(
        self,
        payload: Mapping[str, Any] | None = None,
        *,
        expected_access_token: str | None = None,
    ) -> AccessToken:
        """
        Redeem this refresh token for a new access token, revoking the old one.

        :param payload: Payload of the new access token; defaults to this token's payload.
        :param expected_access_token: When given, must be the currently bound access token.
        :returns: The newly issued access token.
        """
        return self._engine.exchange(
            self, payload, expected_access_token=expected_access_token
        )

    def destroy(self, also_access_token: bool = True) -> None:  # type: ignore[override]
        """Delete the record and, by default, the bound access token in one transaction."""
        self._engine.destroy(
            self._value, also_access_token=also_access_token, bound_hint=self.access_token
        )

    def _rotate(self, value: str, *, created_at: int, expires_at: int) -> None:
        # one-shot rotation replaces the identity of this entity
        self._value = value
        self.created_at = created_at
        self.expires_at = expires_at

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tokenvault.models.base import BaseToken

if TYPE_CHECKING:
    from tokenvault.services.chain.service import ChainedTokenEngine


@dataclass(frozen=True, slots=True)
class MetaData:
    """
    Issue-time settings of a chained token.

    :param ttl: Lifetime in seconds; ``None`` uses the manager default.
    :type ttl: int | None
    :param refresh_limit: ``0`` unlimited, ``-1`` no refresh, ``>0`` capped;
        ``None`` uses the manager default.
    :type refresh_limit: int | None
    :param ip: Client IP the token is bound to (empty = unbound).
    :type ip: str
    :param fingerprint: Client fingerprint the token is bound to (empty = unbound).
    :type fingerprint: str
    """

    ttl: int | None = None
    refresh_limit: int | None = None
    ip: str = ""
    fingerprint: str = ""


class Token(BaseToken):
    """
    Single-token credential with an optional child.

    :ivar created_at: Issue time (Unix seconds).
    :ivar ttl: Lifetime in seconds.
    :ivar expires_at: Current expiry (Unix seconds).
    :ivar refreshed_at: Last refresh time, ``0`` if never refreshed.
    :ivar refresh_count: Successful refreshes.
    :ivar refresh_limit: ``0`` unlimited, ``-1`` disabled, ``>0`` capped.
    :ivar ip: Bound client IP or ``""``.
    :ivar fingerprint: Bound client fingerprint or ``""``.
    :ivar child_token: Value of the child token or ``""``.
    """

    _engine: ChainedTokenEngine

    def __init__(
        self,
        engine: ChainedTokenEngine,
        value: str,
        payload: dict[str, str],
        *,
        created_at: int,
        ttl: int,
        expires_at: int,
        refreshed_at: int = 0,
        refresh_count: int = 0,
        refresh_limit: int = 0,
        ip: str = "",
        fingerprint: str = "",
        child_token: str = "",
    ) -> None:
        super().__init__(engine, value, payload)
        self.created_at = created_at
        self.ttl = ttl
        self.expires_at = expires_at
        self.refreshed_at = refreshed_at
        self.refresh_count = refresh_count
        self.refresh_limit = refresh_limit
        self.ip = ip
        self.fingerprint = fingerprint
        self.child_token = child_token

    def refresh(self) -> None:
        """Extend the lifetime, honouring :attr:`refresh_limit`."""
        self._engine.refresh(self)

    def make_child_token(
        self, meta: MetaData | None = None, payload: Mapping[str, Any] | None = None
    ) -> Token:
        """Issue the (single) child of this token."""
        return self._engine.make_child(self, meta, payload)

    def destroy(self, cascade: bool = False) -> None:  # type: ignore[override]
        """Delete this token, and its child too when ``cascade`` is set."""
        self._engine.destroy(self._value, cascade=cascade)

    def validate_ip(self, client_ip: str) -> bool:
        """Advisory check: ``True`` when unbound or bound to ``client_ip``."""
        return self.ip == "" or self.ip == client_ip

    def validate_fingerprint(self, fingerprint: str) -> bool:
        """Advisory check: ``True`` when unbound or bound to ``fingerprint``."""
        return self.fingerprint == "" or self.fingerprint == fingerprint

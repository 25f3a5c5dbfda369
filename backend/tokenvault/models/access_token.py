from __future__ import annotations

from typing import TYPE_CHECKING

from tokenvault.models.base import BaseToken

if TYPE_CHECKING:
    from tokenvault.services.access.service import AccessTokenEngine


class AccessToken(BaseToken):
    """
    Short-lived bearer credential.

    :ivar created_at: Issue time (Unix seconds).
    :ivar ttl: Lifetime in seconds, reapplied on every refresh.
    :ivar expires_at: ``created_at + ttl``, recomputed as ``now + ttl`` on refresh.
    :ivar refreshed_at: Last refresh time, ``0`` if never refreshed.
    :ivar refresh_count: Number of successful refreshes.
    """

    _engine: AccessTokenEngine

    def __init__(
        self,
        engine: AccessTokenEngine,
        value: str,
        payload: dict[str, str],
        *,
        created_at: int,
        ttl: int,
        expires_at: int,
        refreshed_at: int = 0,
        refresh_count: int = 0,
    ) -> None:
        super().__init__(engine, value, payload)
        self.created_at = created_at
        self.ttl = ttl
        self.expires_at = expires_at
        self.refreshed_at = refreshed_at
        self.refresh_count = refresh_count

    def refresh(self) -> None:
        """Extend the lifetime by ``ttl`` from now and bump the refresh counter."""
        self._engine.refresh(self)

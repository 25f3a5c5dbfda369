# tokenvault/services/access/service.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from tokenvault.models.access_token import AccessToken
from tokenvault.models.fields import (
    CREATED_AT,
    EXPIRES_AT,
    REFRESH_COUNT,
    REFRESHED_AT,
    TTL,
    Record,
    encode_payload,
    int_field,
    split_record,
)
from tokenvault.services._shared.base import BaseEngine

log = logging.getLogger(__name__)


class AccessTokenEngine(BaseEngine):
    """
    Issue, parse, refresh and destroy short-lived access tokens.

    Record layout: caller payload plus ``_created_at``, ``_ttl``,
    ``_expires_at``, ``_refreshed_at`` and ``_refresh_count``; the hash
    carries a store expiry equal to ``_ttl``.
    """

    kind = "access"

    # ------------------------------------------------------------------ #
    # Record <-> entity
    # ------------------------------------------------------------------ #

    @staticmethod
    def build_record(fields: Mapping[str, str], ttl: int, now: int) -> Record:
        """Return the full hash of a fresh access token (payload already encoded)."""
        record: Record = dict(fields)
        record.update(
            {
                CREATED_AT: str(now),
                TTL: str(ttl),
                EXPIRES_AT: str(now + ttl),
                REFRESHED_AT: "0",
                REFRESH_COUNT: "0",
            }
        )
        return record

    def from_record(self, value: str, record: Mapping[str, str]) -> AccessToken:
        """:raises InvalidTokenError: If reserved fields are missing or corrupt."""
        meta, payload = split_record(record)
        created_at = int_field(meta, CREATED_AT)
        ttl = int_field(meta, TTL, default=self.ttl)
        return AccessToken(
            self,
            value,
            payload,
            created_at=created_at,
            ttl=ttl,
            expires_at=int_field(meta, EXPIRES_AT, default=created_at + ttl),
            refreshed_at=int_field(meta, REFRESHED_AT, default=0),
            refresh_count=int_field(meta, REFRESH_COUNT, default=0),
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def issue(
        self, payload: Mapping[str, Any] | None = None, ttl: int | None = None
    ) -> AccessToken:
        """
        Issue a new access token.

        :param payload: Caller fields (names must not start with ``_``).
        :param ttl: Lifetime in seconds; defaults to the engine TTL.
        :returns: The issued token.
        :raises ValidationError: For a bad ``ttl`` or payload.
        :raises CollisionError: If the generated value already exists (store untouched).
        """
        ttl = self.check_ttl(self.ttl if ttl is None else ttl)
        fields = encode_payload(payload)
        value = self.new_value()
        record = self.build_record(fields, ttl, self.now())

        with self._op("issue") as op:
            self._insert(op, value, record, ttl)

        log.info("Access token issued: value=%s ttl=%d", self.redact(value), ttl)
        return self.from_record(value, record)

    def parse(self, value: str) -> AccessToken:
        """
        Load an access token from the store.

        :raises MalformedTokenError: If ``value`` fails the well-formedness gate.
        :raises InvalidTokenError: If the token never existed, expired or was revoked.
        """
        self.check_value(value)
        with self._op("parse") as op:
            record = self._load(op, value)
        return self.from_record(value, record)

    def refresh(self, token: AccessToken) -> None:
        """
        Restart the token lifetime and bump its refresh counter.

        The entity is updated only after the transaction commits.
        """
        count, refreshed_at, expires_at = self._refresh_record(token.value)
        token.refresh_count = count
        token.refreshed_at = refreshed_at
        token.expires_at = expires_at

    def destroy(self, value: str) -> None:
        """Delete the token record (idempotent)."""
        self.delete(value)

# tokenvault/services/chain/service.py
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from redis.client import Pipeline  # type: ignore[import-untyped]

from tokenvault.core import ids
from tokenvault.infra.redis.record_store import RedisRecordStore
from tokenvault.models.fields import (
    CHILD_TOKEN,
    CREATED_AT,
    EXPIRES_AT,
    FINGERPRINT,
    IP,
    REFRESH_COUNT,
    REFRESH_LIMIT,
    REFRESHED_AT,
    TTL,
    Record,
    decode_record,
    encode_payload,
    int_field,
    split_record,
    text,
)
from tokenvault.models.token import MetaData, Token
from tokenvault.services._shared.base import BaseEngine
from tokenvault.services._shared.errors import (
    AlreadyHasChildError,
    CollisionError,
    InvalidTokenError,
    RefreshLimitError,
    ValidationError,
)

log = logging.getLogger(__name__)

#: Refresh limit value that forbids any refresh.
NO_REFRESH = -1
#: Refresh limit value that allows unlimited refreshes.
UNLIMITED = 0


def check_refresh_limit(limit: Any) -> int:
    """:raises ValidationError: Unless ``limit`` is an integer >= -1."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < NO_REFRESH:
        raise ValidationError("refresh_limit must be an integer >= -1")
    return limit


class ChainedTokenEngine(BaseEngine):
    """
    Single-token credentials with an optional child.

    Each token may carry client bindings (IP, fingerprint), its own refresh
    limit and at most one child token. The child link lives on the parent
    record (``_child_token``) and is only written in the transaction that
    creates the child.
    """

    kind = "token"

    def __init__(
        self,
        store: RedisRecordStore,
        prefix: str,
        *,
        ttl: int,
        refresh_limit: int = UNLIMITED,
        make_token: Callable[[], str] = ids.generate,
        check_token: Callable[[str], bool] = ids.is_well_formed,
        clock: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(
            store,
            prefix,
            ttl=ttl,
            make_token=make_token,
            check_token=check_token,
            clock=clock,
        )
        self.refresh_limit = check_refresh_limit(refresh_limit)

    # ------------------------------------------------------------------ #
    # Record <-> entity
    # ------------------------------------------------------------------ #

    def resolve_meta(self, meta: MetaData | None) -> MetaData:
        """Fill unset ``meta`` values from the engine defaults and validate them."""
        meta = meta or MetaData()
        ttl = self.check_ttl(self.ttl if meta.ttl is None else meta.ttl)
        limit = check_refresh_limit(
            self.refresh_limit if meta.refresh_limit is None else meta.refresh_limit
        )
        return MetaData(
            ttl=ttl, refresh_limit=limit, ip=meta.ip or "", fingerprint=meta.fingerprint or ""
        )

    @staticmethod
    def build_record(fields: Mapping[str, str], meta: MetaData, ttl: int, now: int) -> Record:
        """Return the full hash of a fresh token; ``meta`` must be resolved."""
        record: Record = dict(fields)
        record.update(
            {
                CREATED_AT: str(now),
                TTL: str(ttl),
                EXPIRES_AT: str(now + ttl),
                REFRESHED_AT: "0",
                REFRESH_COUNT: "0",
                REFRESH_LIMIT: str(meta.refresh_limit),
                IP: meta.ip,
                FINGERPRINT: meta.fingerprint,
                CHILD_TOKEN: "",
            }
        )
        return record

    def from_record(self, value: str, record: Mapping[str, str]) -> Token:
        meta, payload = split_record(record)
        created_at = int_field(meta, CREATED_AT)
        ttl = int_field(meta, TTL, default=self.ttl)
        return Token(
            self,
            value,
            payload,
            created_at=created_at,
            ttl=ttl,
            expires_at=int_field(meta, EXPIRES_AT, default=created_at + ttl),
            refreshed_at=int_field(meta, REFRESHED_AT, default=0),
            refresh_count=int_field(meta, REFRESH_COUNT, default=0),
            refresh_limit=int_field(meta, REFRESH_LIMIT, default=UNLIMITED),
            ip=meta.get(IP, ""),
            fingerprint=meta.get(FINGERPRINT, ""),
            child_token=meta.get(CHILD_TOKEN, ""),
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def issue(
        self, meta: MetaData | None = None, payload: Mapping[str, Any] | None = None
    ) -> Token:
        """
        Issue a new top-level token.

        :param meta: Lifetime, refresh limit and client bindings; ``None`` uses defaults.
        :param payload: Caller fields.
        :raises ValidationError: For a bad ``ttl``, ``refresh_limit`` or payload.
        :raises CollisionError: If the generated value already exists.
        """
        resolved = self.resolve_meta(meta)
        fields = encode_payload(payload)
        value = self.new_value()
        ttl = resolved.ttl or self.ttl
        record = self.build_record(fields, resolved, ttl, self.now())

        with self._op("issue") as op:
            self._insert(op, value, record, ttl)

        log.info(
            "Token issued: value=%s ttl=%d refresh_limit=%s",
            self.redact(value),
            ttl,
            resolved.refresh_limit,
        )
        return self.from_record(value, record)

    def parse(self, value: str) -> Token:
        """
        Load a token from the store.

        :raises MalformedTokenError: If ``value`` fails the well-formedness gate.
        :raises InvalidTokenError: If the token never existed, expired or was revoked.
        """
        self.check_value(value)
        with self._op("parse") as op:
            record = self._load(op, value)
        return self.from_record(value, record)

    def check_refresh_allowed(self, record: Record, count: int) -> None:
        limit = int_field(record, REFRESH_LIMIT, default=UNLIMITED)
        if limit == NO_REFRESH or (limit > 0 and count >= limit):
            raise RefreshLimitError(limit, count)

    def refresh(self, token: Token) -> None:
        """
        Extend the lifetime of ``token`` by its own TTL.

        The limit is evaluated against the stored counter, not the cached one.

        :raises RefreshLimitError: If refreshing is disabled or the cap is reached.
        :raises InvalidTokenError: If the token is gone.
        """
        count, refreshed_at, expires_at = self._refresh_record(token.value)
        token.refresh_count = count
        token.refreshed_at = refreshed_at
        token.expires_at = expires_at

    def make_child(
        self,
        parent: Token,
        meta: MetaData | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> Token:
        """
        Issue the single child of ``parent``.

        The child record and the parent's ``_child_token`` stamp are written in
        one transaction, with the parent and the new key under ``WATCH``.

        :raises AlreadyHasChildError: If the stored parent already references a child.
        :raises InvalidTokenError: If the parent is gone.
        :raises CollisionError: If the generated child value already exists.
        """
        if parent.child_token:
            raise AlreadyHasChildError(parent.child_token)
        parent_value = self.check_value(parent.value)
        parent_key = self.key(parent_value)
        resolved = self.resolve_meta(meta)
        fields = encode_payload(payload)
        child = self.new_value()
        child_key = self.key(child)
        ttl = resolved.ttl or self.ttl

        def _write(pipe: Pipeline) -> Record:
            stored = decode_record(pipe.hgetall(parent_key))
            if not stored:
                raise InvalidTokenError()
            existing = stored.get(CHILD_TOKEN, "")
            if existing:
                raise AlreadyHasChildError(existing)
            if pipe.exists(child_key):
                raise CollisionError()
            record = self.build_record(fields, resolved, ttl, self.now())
            pipe.multi()
            pipe.hset(child_key, mapping=record)
            pipe.expire(child_key, ttl)
            pipe.hset(parent_key, CHILD_TOKEN, child)
            return record

        with self._op("make_child") as op:
            record = op.transact(_write, parent_key, child_key)

        parent.child_token = child
        log.info(
            "Child token issued: parent=%s child=%s ttl=%d",
            self.redact(parent_value),
            self.redact(child),
            ttl,
        )
        return self.from_record(child, record)

    def destroy(self, value: str, *, cascade: bool = False) -> None:
        """
        Delete a token; with ``cascade`` its child goes in the same ``DEL``.

        The child link is read and deleted in one transaction, with the parent
        under ``WATCH``. Cascade follows one level only. Absent records are
        not an error.
        """
        key = self.key(self.check_value(value))

        def _delete(pipe: Pipeline) -> str:
            raw = pipe.hget(key, CHILD_TOKEN) if cascade else None
            child = text(raw) if raw else ""
            pipe.multi()
            pipe.delete(key, *([self.key(child)] if child else []))
            return child

        with self._op("destroy") as op:
            child = op.transact(_delete, key)
        log.info(
            "Token destroyed: value=%s child=%s",
            self.redact(value),
            self.redact(child) if child else "-",
        )

# tokenvault/services/_shared/base.py
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from redis.client import Pipeline  # type: ignore[import-untyped]

from tokenvault.core import ids
from tokenvault.infra.redis.record_store import RedisRecordStore, StoreOperation
from tokenvault.models.fields import (
    EXPIRES_AT,
    REFRESH_COUNT,
    REFRESHED_AT,
    TTL,
    Record,
    check_field_name,
    decode_record,
    encode_value,
    int_field,
    payload_of,
    text,
)
from tokenvault.services._shared.errors import (
    CollisionError,
    InvalidTokenError,
    MalformedTokenError,
    TokenGenerationError,
    TransactionAbortedError,
    ValidationError,
)

log = logging.getLogger(__name__)


class BaseEngine:
    """
    Base class for the token engines.

    Responsibilities
    ----------------
    * Key building inside one namespace (``prefix``).
    * Well-formedness gate before any store access.
    * Payload field access (get / get-all / set), remaining TTL, destroy.
    * The shared insert and refresh transactions.

    Notes
    -----
    - Engines hold no in-process locks; concurrent callers are serialized by
      the store (``WATCH``/``MULTI``/``EXEC``).
    - Infrastructure errors are never swallowed; they leave the store as
      :class:`~tokenvault.services._shared.errors.StoreError` and propagate.
    """

    #: Operation name prefix used in logs and errors.
    kind = "token"

    def __init__(
        self,
        store: RedisRecordStore,
        prefix: str,
        *,
        ttl: int,
        make_token: Callable[[], str] = ids.generate,
        check_token: Callable[[str], bool] = ids.is_well_formed,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """
        :param store: Record store wrapping the Redis client.
        :param prefix: Key namespace of this engine's records.
        :param ttl: Default lifetime in seconds.
        :param make_token: Identifier generator.
        :param check_token: Identifier well-formedness check.
        :param clock: Wall clock returning Unix seconds (``time.time`` by default).
        """
        self.store = store
        self.prefix = prefix
        self.ttl = ttl
        self._make_token = make_token
        self._check_token = check_token
        self._clock = clock or time.time

    # -------------------- helpers --------------------

    def key(self, value: str) -> str:
        return f"{self.prefix}{value}"

    def now(self) -> int:
        return int(self._clock())

    @staticmethod
    def redact(value: str) -> str:
        """Shorten a token value for logs."""
        if len(value) <= 12:
            return "***"
        return f"{value[:10]}..."

    def new_value(self) -> str:
        """:raises TokenGenerationError: If the generator returns an empty value."""
        value = self._make_token()
        if not value:
            raise TokenGenerationError()
        return value

    def check_value(self, value: Any) -> str:
        """:raises MalformedTokenError: If ``value`` fails the well-formedness gate."""
        if not isinstance(value, str) or not value or not self._check_token(value):
            raise MalformedTokenError()
        return value

    @staticmethod
    def check_ttl(ttl: Any) -> int:
        """:raises ValidationError: Unless ``ttl`` is an integer >= 1."""
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl < 1:
            raise ValidationError("ttl must be an integer number of seconds >= 1")
        return ttl

    @contextmanager
    def _op(self, name: str) -> Iterator[StoreOperation]:
        with self.store.operation(f"{self.kind}.{name}") as op:
            yield op

    def _load(self, op: StoreOperation, value: str) -> Record:
        record = op.hgetall(self.key(value))
        if not record:
            raise InvalidTokenError()
        return record

    # -------------------- field access ---------------

    def get_field(self, value: str, field: str) -> str | None:
        """
        Read one payload field.

        :returns: The field value, or ``None`` when the live record has no such field.
        :raises InvalidTokenError: If the record is gone.
        """
        name = check_field_name(field)
        key = self.key(self.check_value(value))
        with self._op("get") as op:
            with op.pipeline() as pipe:
                pipe.exists(key)
                pipe.hget(key, name)
                exists, raw = pipe.execute()
        if not exists:
            raise InvalidTokenError()
        return None if raw is None else text(raw)

    def get_all(self, value: str, *, include_metadata: bool = False) -> dict[str, str]:
        """Read the full record; reserved fields are stripped unless requested."""
        self.check_value(value)
        with self._op("get_all") as op:
            record = self._load(op, value)
        return record if include_metadata else payload_of(record)

    def set_field(self, value: str, field: str, raw_value: Any) -> str:
        """
        Write one payload field of a live record.

        :returns: The encoded value as stored.
        :raises InvalidTokenError: If the record is gone.
        """
        name = check_field_name(field)
        encoded = encode_value(raw_value)
        key = self.key(self.check_value(value))

        def _write(pipe: Pipeline) -> None:
            # HSET on a missing key would create a record without expiry
            if not pipe.exists(key):
                raise InvalidTokenError()
            pipe.multi()
            pipe.hset(key, name, encoded)

        with self._op("set") as op:
            op.transact(_write, key)
        return encoded

    def ttl_remaining(self, value: str) -> int | None:
        """
        Seconds left before the store expires the record.

        :returns: Remaining seconds, or ``None`` for a record without expiry.
        :raises InvalidTokenError: If the record is gone.
        """
        key = self.key(self.check_value(value))
        with self._op("ttl") as op:
            remaining = op.ttl(key)
        if remaining == -2:
            raise InvalidTokenError()
        if remaining == -1:
            return None
        return remaining

    def delete(self, *values: str) -> int:
        """Delete records unconditionally; absent records are not an error."""
        keys = [self.key(self.check_value(v)) for v in values if v]
        with self._op("destroy") as op:
            removed = op.delete(*keys)
        log.info("Destroyed %s record(s): kind=%s removed=%d", len(keys), self.kind, removed)
        return removed

    # -------------------- shared transactions --------

    def _insert(self, op: StoreOperation, value: str, record: Mapping[str, Any], ttl: int) -> None:
        """
        Write a brand-new record with its expiry.

        The existence check and the write share one ``WATCH``: a key created
        concurrently aborts the transaction instead of being overwritten.

        :raises CollisionError: If the key exists (or appears) before commit.
        """
        key = self.key(value)

        def _write(pipe: Pipeline) -> None:
            if pipe.exists(key):
                raise CollisionError()
            pipe.multi()
            pipe.hset(key, mapping=dict(record))
            pipe.expire(key, ttl)

        try:
            op.transact(_write, key, retry=False)
        except (CollisionError, TransactionAbortedError) as exc:
            log.warning("Token value collision: kind=%s value=%s", self.kind, self.redact(value))
            if isinstance(exc, CollisionError):
                raise
            raise CollisionError() from exc

    def check_refresh_allowed(self, record: Record, count: int) -> None:
        """Refresh policy hook; the default allows unlimited refreshes."""

    def _refresh_record(self, value: str) -> tuple[int, int, int]:
        """
        Bump the refresh counter and restart the lifetime of a record.

        The counter is read from the store under ``WATCH`` (never from the
        cached entity), so concurrent refreshes cannot lose an increment.

        :returns: ``(refresh_count, refreshed_at, expires_at)`` as committed.
        :raises InvalidTokenError: If the record is gone.
        """
        key = self.key(self.check_value(value))

        def _write(pipe: Pipeline) -> tuple[int, int, int]:
            record = decode_record(pipe.hgetall(key))
            if not record:
                raise InvalidTokenError()
            count = int_field(record, REFRESH_COUNT)
            self.check_refresh_allowed(record, count)
            ttl = int_field(record, TTL, default=self.ttl)
            now = self.now()
            pipe.multi()
            pipe.hset(
                key,
                mapping={REFRESH_COUNT: count + 1, REFRESHED_AT: now, EXPIRES_AT: now + ttl},
            )
            pipe.expire(key, ttl)
            return count + 1, now, now + ttl

        with self._op("refresh") as op:
            result = op.transact(_write, key)
        log.info(
            "Token refreshed: kind=%s value=%s count=%d",
            self.kind,
            self.redact(value),
            result[0],
        )
        return result

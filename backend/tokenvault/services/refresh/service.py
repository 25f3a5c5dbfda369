# tokenvault/services/refresh/service.py
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from redis.client import Pipeline  # type: ignore[import-untyped]

from tokenvault.core import ids
from tokenvault.infra.redis.record_store import RedisRecordStore
from tokenvault.models.access_token import AccessToken
from tokenvault.models.fields import (
    ACCESS_TOKEN,
    CREATED_AT,
    EXPIRES_AT,
    TTL,
    USE_COUNT,
    USED_AT,
    Record,
    decode_record,
    encode_payload,
    int_field,
    split_record,
)
from tokenvault.models.refresh_token import RefreshToken
from tokenvault.services._shared.base import BaseEngine
from tokenvault.services._shared.errors import (
    CollisionError,
    ExpiredTokenError,
    InvalidTokenError,
    TokenMismatchError,
    ValidationError,
)
from tokenvault.services.access.service import AccessTokenEngine
from tokenvault.services.refresh.dto import RotationPolicy

log = logging.getLogger(__name__)


class RefreshTokenEngine(BaseEngine):
    """
    Issue, parse, exchange and destroy refresh tokens.

    A refresh token record holds the value of the access token it currently
    authorizes (``_access_token``) plus use tracking (``_use_count``,
    ``_used_at``). Exchange mints a new access token, revokes the previous
    one and updates the binding in a single transaction.
    """

    kind = "refresh"

    def __init__(
        self,
        store: RedisRecordStore,
        prefix: str,
        *,
        ttl: int,
        access: AccessTokenEngine,
        rotation: RotationPolicy = RotationPolicy.REUSABLE,
        make_token: Callable[[], str] = ids.generate,
        check_token: Callable[[str], bool] = ids.is_well_formed,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """
        :param access: Engine of the access tokens this engine mints and revokes.
        :param rotation: Exchange policy, fixed for the engine's lifetime.
        """
        super().__init__(
            store,
            prefix,
            ttl=ttl,
            make_token=make_token,
            check_token=check_token,
            clock=clock,
        )
        self.access = access
        self.rotation = RotationPolicy(rotation)

    # ------------------------------------------------------------------ #
    # Record <-> entity
    # ------------------------------------------------------------------ #

    @staticmethod
    def build_record(fields: Mapping[str, str], access_token: str, ttl: int, now: int) -> Record:
        record: Record = dict(fields)
        record.update(
            {
                ACCESS_TOKEN: access_token,
                CREATED_AT: str(now),
                TTL: str(ttl),
                EXPIRES_AT: str(now + ttl),
                USE_COUNT: "0",
                USED_AT: "0",
            }
        )
        return record

    def from_record(self, value: str, record: Mapping[str, str]) -> RefreshToken:
        meta, payload = split_record(record)
        created_at = int_field(meta, CREATED_AT)
        ttl = int_field(meta, TTL, default=self.ttl)
        return RefreshToken(
            self,
            value,
            payload,
            access_token=meta.get(ACCESS_TOKEN, ""),
            created_at=created_at,
            ttl=ttl,
            expires_at=int_field(meta, EXPIRES_AT, default=created_at + ttl),
            use_count=int_field(meta, USE_COUNT, default=0),
            used_at=int_field(meta, USED_AT, default=0),
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def issue(
        self,
        access_token: AccessToken | str,
        payload: Mapping[str, Any] | None = None,
        ttl: int | None = None,
    ) -> RefreshToken:
        """
        Issue a refresh token bound to an existing access token.

        :param access_token: Entity or value of the access token to bind.
        :param payload: Fields carried into access tokens minted by exchange;
            defaults to the access token's payload when an entity is given.
        :param ttl: Lifetime in seconds; must exceed the access token TTL (the
            entity's own TTL when an entity is given).
        :raises InvalidTokenError: If the access token does not currently exist.
        :raises ValidationError: For a bad ``ttl`` or payload.
        :raises CollisionError: If the generated value already exists.
        """
        ttl = self.check_ttl(self.ttl if ttl is None else ttl)
        if ttl <= self.access.ttl:
            raise ValidationError("refresh token ttl must exceed the access token ttl")

        if isinstance(access_token, AccessToken):
            # the bound token may carry a longer ttl than the engine default
            if ttl <= access_token.ttl:
                raise ValidationError("refresh token ttl must exceed the access token ttl")
            bound = access_token.value
            if payload is None:
                payload = access_token.payload
        else:
            bound = access_token
        self.access.check_value(bound)

        fields = encode_payload(payload)
        value = self.new_value()
        record = self.build_record(fields, bound, ttl, self.now())

        with self._op("issue") as op:
            # checked, not locked: the access token may still expire afterwards
            if not op.exists(self.access.key(bound)):
                raise InvalidTokenError()
            self._insert(op, value, record, ttl)

        log.info(
            "Refresh token issued: value=%s access=%s ttl=%d",
            self.redact(value),
            self.redact(bound),
            ttl,
        )
        return self.from_record(value, record)

    def parse(self, value: str) -> RefreshToken:
        """
        Load a refresh token from the store.

        :raises MalformedTokenError: If ``value`` fails the well-formedness gate.
        :raises InvalidTokenError: If the token never existed, expired or was revoked.
        """
        self.check_value(value)
        with self._op("parse") as op:
            record = self._load(op, value)
        return self.from_record(value, record)

    def exchange(
        self,
        token: RefreshToken,
        payload: Mapping[str, Any] | None = None,
        *,
        expected_access_token: str | None = None,
    ) -> AccessToken:
        """
        Redeem ``token`` for a new access token (rotation).

        Steps, inside one ``WATCH``/``MULTI``/``EXEC`` transaction after the
        refresh record has been re-read from the store:

        1. Reject an expired refresh token.
        2. Guard against a collision on the new access token value.
        3. Write the new access token with the configured access TTL.
        4. Point the refresh token at it (``_use_count += 1``, ``_used_at = now``);
           under ``ONE_SHOT`` write the successor record and delete the old one.
        5. Delete the previously bound access token.

        The delete is queued last, so the old credential is only revoked
        together with the durable link to its replacement.

        :param token: Refresh token entity (updated in place on success).
        :param payload: Payload of the new access token; defaults to the refresh token's payload.
        :param expected_access_token: When given, must equal the currently bound access token.
        :returns: The new access token.
        :raises InvalidTokenError: If the refresh token is gone.
        :raises ExpiredTokenError: If its recorded expiry has passed.
        :raises TokenMismatchError: If ``expected_access_token`` is not the bound token.
        :raises CollisionError: If a generated value is already taken.
        """
        old_value = self.check_value(token.value)
        rt_key = self.key(old_value)
        fields = None if payload is None else encode_payload(payload)

        new_access = self.access.new_value()
        new_access_key = self.access.key(new_access)
        successor = self.new_value() if self.rotation is RotationPolicy.ONE_SHOT else None
        watch = [rt_key, new_access_key]
        if successor is not None:
            watch.append(self.key(successor))
        access_ttl = self.access.ttl

        def _write(pipe: Pipeline) -> tuple[Record, str, int, int, tuple[int, int] | None]:
            record = decode_record(pipe.hgetall(rt_key))
            if not record:
                raise InvalidTokenError()
            meta, stored_payload = split_record(record)
            now = self.now()
            if int_field(meta, EXPIRES_AT) < now:
                raise ExpiredTokenError()
            bound = meta.get(ACCESS_TOKEN, "")
            if expected_access_token is not None and expected_access_token != bound:
                raise TokenMismatchError()
            if pipe.exists(new_access_key):
                raise CollisionError()
            if successor is not None and pipe.exists(self.key(successor)):
                raise CollisionError()

            use_count = int_field(meta, USE_COUNT, default=0) + 1
            access_record = self.access.build_record(
                stored_payload if fields is None else fields, access_ttl, now
            )
            link = {ACCESS_TOKEN: new_access, USE_COUNT: str(use_count), USED_AT: str(now)}

            pipe.multi()
            pipe.hset(new_access_key, mapping=access_record)
            pipe.expire(new_access_key, access_ttl)
            rotated: tuple[int, int] | None = None
            if successor is None:
                # reusable: value and store expiry of the refresh token stay as they are
                pipe.hset(rt_key, mapping=link)
            else:
                rt_ttl = int_field(meta, TTL, default=self.ttl)
                successor_record = dict(record)
                successor_record.update(link)
                successor_record.update(
                    {CREATED_AT: str(now), TTL: str(rt_ttl), EXPIRES_AT: str(now + rt_ttl)}
                )
                successor_key = self.key(successor)
                pipe.hset(successor_key, mapping=successor_record)
                pipe.expire(successor_key, rt_ttl)
                pipe.delete(rt_key)
                rotated = (now, now + rt_ttl)
            if bound:
                pipe.delete(self.access.key(bound))
            return access_record, bound, use_count, now, rotated

        with self._op("exchange") as op:
            access_record, old_access, use_count, now, rotated = op.transact(_write, *watch)

        token.access_token = new_access
        token.use_count = use_count
        token.used_at = now
        if successor is not None and rotated is not None:
            token._rotate(successor, created_at=rotated[0], expires_at=rotated[1])

        log.info(
            "Refresh token exchanged: refresh=%s old_access=%s new_access=%s uses=%d policy=%s",
            self.redact(old_value),
            self.redact(old_access) if old_access else "-",
            self.redact(new_access),
            use_count,
            self.rotation.value,
        )
        return self.access.from_record(new_access, access_record)

    def destroy(self, value: str, *, also_access_token: bool = True, bound_hint: str = "") -> None:
        """
        Delete a refresh token and, if requested, its bound access token, in one transaction.

        The binding is read from the store; ``bound_hint`` is only used when
        the refresh record is already gone. Absent records are not an error.
        """
        key = self.key(self.check_value(value))
        with self._op("destroy") as op:
            bound = bound_hint
            if also_access_token:
                bound = op.hget(key, ACCESS_TOKEN) or bound_hint
            with op.pipeline() as pipe:
                pipe.delete(key)
                if also_access_token and bound:
                    pipe.delete(self.access.key(bound))
                pipe.execute()
        log.info(
            "Refresh token destroyed: value=%s access=%s",
            self.redact(value),
            self.redact(bound) if also_access_token and bound else "-",
        )

"""Unit tests for AccessTokenEngine backed by fakeredis and a fake clock."""

from __future__ import annotations

import pytest

from tokenvault.infra.redis.record_store import RedisRecordStore
from tokenvault.services._shared.errors import (
    CollisionError,
    InvalidTokenError,
    MalformedTokenError,
    ReservedFieldError,
    TokenGenerationError,
    TransactionAbortedError,
    ValidationError,
)
from tokenvault.services.access.service import AccessTokenEngine

ACCESS_PREFIX = "test:access:"
START = 1_700_000_000


def test_issue_then_parse_round_trip(access_engine):
    issued = access_engine.issue({"user_id": 42, "role": "admin"}, ttl=60)

    parsed = access_engine.parse(issued.value)
    assert parsed.payload == {"user_id": "42", "role": "admin"}
    assert parsed.created_at == START
    assert parsed.expires_at - parsed.created_at == 60
    assert parsed.refresh_count == 0
    assert parsed.refreshed_at == 0
    assert parsed.ttl == 60


def test_issue_writes_metadata_and_store_expiry(access_engine, fake_redis):
    token = access_engine.issue({"field1": "value1"})
    raw = fake_redis.hgetall(ACCESS_PREFIX + token.value)
    assert raw[b"_created_at"] == str(START).encode()
    assert raw[b"_expires_at"] == str(START + 60).encode()
    assert raw[b"_refresh_count"] == b"0"
    assert raw[b"_ttl"] == b"60"
    assert 0 < fake_redis.ttl(ACCESS_PREFIX + token.value) <= 60


def test_get_all_and_remaining_ttl_scenario(access_engine, clock):
    token = access_engine.issue({"field1": "value1"}, ttl=60)
    clock.advance(3)

    assert token.get_all() == {"field1": "value1"}
    assert 58 <= token.ttl_remaining() <= 60
    assert "_created_at" in token.get_all(include_metadata=True)


@pytest.mark.parametrize("ttl", [0, -5, 1.5, "60", True])
def test_issue_rejects_invalid_ttl(access_engine, fake_redis, ttl):
    with pytest.raises(ValidationError):
        access_engine.issue({"a": "1"}, ttl=ttl)
    assert fake_redis.dbsize() == 0


def test_issue_rejects_reserved_payload_fields(access_engine, fake_redis):
    with pytest.raises(ReservedFieldError):
        access_engine.issue({"_refresh_count": "99"})
    assert fake_redis.dbsize() == 0


def test_issue_rejects_non_utf8_bytes_in_payload(access_engine, fake_redis):
    with pytest.raises(ValidationError, match="UTF-8"):
        access_engine.issue({"blob": b"\xff\xfe"})
    assert fake_redis.dbsize() == 0


def test_parse_rejects_malformed_value_without_touching_the_store(access_engine, fake_redis):
    fake_redis.hset(ACCESS_PREFIX + "bogus", "a", "1")
    with pytest.raises(MalformedTokenError):
        access_engine.parse("bogus")


def test_parse_unknown_expired_and_revoked_look_the_same(access_engine, fake_redis):
    never = "01ARZ3NDEKTSV4RRFFQ69G5FAV"
    expired = access_engine.issue()
    revoked = access_engine.issue()
    # simulate store expiry by deleting the underlying key
    fake_redis.delete(ACCESS_PREFIX + expired.value)
    revoked.destroy()

    messages = set()
    for value in (never, expired.value, revoked.value):
        with pytest.raises(InvalidTokenError) as exc:
            access_engine.parse(value)
        assert type(exc.value) is InvalidTokenError
        messages.add(str(exc.value))
    assert len(messages) == 1


def test_parse_reports_corrupt_metadata_as_invalid(access_engine, fake_redis):
    token = access_engine.issue()
    fake_redis.hset(ACCESS_PREFIX + token.value, "_created_at", "yesterday")
    with pytest.raises(InvalidTokenError):
        access_engine.parse(token.value)


def test_refresh_is_monotonic(access_engine, clock, fake_redis):
    token = access_engine.issue(ttl=60)
    previous = token.expires_at
    for n in range(1, 4):
        clock.advance(10)
        token.refresh()
        assert token.refresh_count == n
        assert token.expires_at > previous
        assert token.expires_at == clock.now + 60
        assert token.refreshed_at == clock.now
        previous = token.expires_at

    parsed = access_engine.parse(token.value)
    assert parsed.refresh_count == 3
    assert parsed.expires_at == token.expires_at
    assert 0 < fake_redis.ttl(token.key) <= 60


def test_refresh_reads_the_counter_from_the_store(access_engine):
    token = access_engine.issue()
    stale = access_engine.parse(token.value)
    token.refresh()
    token.refresh()

    stale.refresh()
    assert stale.refresh_count == 3


def test_refresh_of_a_destroyed_token_fails_and_leaves_entity_untouched(access_engine):
    token = access_engine.issue()
    token.destroy()
    with pytest.raises(InvalidTokenError):
        token.refresh()
    assert token.refresh_count == 0


def test_refresh_retries_after_a_concurrent_write(fake_redis, interfering_clock):
    clock = interfering_clock
    engine = AccessTokenEngine(RedisRecordStore(r=fake_redis), ACCESS_PREFIX, ttl=60, clock=clock)
    token = engine.issue()
    clock.arm(token.key, times=2)

    token.refresh()

    assert token.refresh_count == 1
    assert engine.parse(token.value).refresh_count == 1


def test_refresh_gives_up_when_always_contended(fake_redis, interfering_clock):
    clock = interfering_clock
    store = RedisRecordStore(r=fake_redis, max_watch_retries=1)
    engine = AccessTokenEngine(store, ACCESS_PREFIX, ttl=60, clock=clock)
    token = engine.issue()
    clock.arm(token.key, times=10)

    with pytest.raises(TransactionAbortedError) as exc:
        token.refresh()
    assert exc.value.attempts == 2
    assert exc.value.operation == "access.refresh"


def test_issue_collision_leaves_existing_record_alone(store, clock, fake_redis):
    engine = AccessTokenEngine(
        store, ACCESS_PREFIX, ttl=60, clock=clock, make_token=lambda: "01ARZ3NDEKTSV4RRFFQ69G5FAV"
    )
    first = engine.issue({"owner": "first"})

    with pytest.raises(CollisionError):
        engine.issue({"owner": "second"})
    assert engine.parse(first.value).payload == {"owner": "first"}
    assert fake_redis.dbsize() == 1


def test_empty_generated_value_is_an_infrastructure_error(store):
    engine = AccessTokenEngine(store, ACCESS_PREFIX, ttl=60, make_token=lambda: "")
    with pytest.raises(TokenGenerationError):
        engine.issue()


def test_get_and_set_fields(access_engine):
    token = access_engine.issue({"a": "1"})
    assert token.get("a") == "1"
    assert token.get("missing") is None

    token.set("b", 2)
    assert token.get("b") == "2"
    assert token.payload == {"a": "1", "b": "2"}

    with pytest.raises(ReservedFieldError):
        token.set("_expires_at", 0)
    with pytest.raises(ReservedFieldError):
        token.get("_ttl")


def test_set_never_resurrects_a_gone_record(access_engine, fake_redis):
    token = access_engine.issue({"a": "1"})
    token.destroy()
    with pytest.raises(InvalidTokenError):
        token.set("a", "2")
    with pytest.raises(InvalidTokenError):
        token.get("a")
    assert fake_redis.exists(token.key) == 0


def test_ttl_remaining_of_a_gone_record(access_engine):
    token = access_engine.issue()
    token.destroy()
    with pytest.raises(InvalidTokenError):
        token.ttl_remaining()


def test_ttl_remaining_without_store_expiry(access_engine, fake_redis):
    token = access_engine.issue()
    fake_redis.persist(token.key)
    assert token.ttl_remaining() is None


def test_destroy_is_idempotent(access_engine, fake_redis):
    token = access_engine.issue()
    token.destroy()
    token.destroy()
    access_engine.destroy(token.value)
    assert fake_redis.exists(token.key) == 0


def test_repr_does_not_leak_the_value(access_engine):
    token = access_engine.issue()
    assert token.value not in repr(token)

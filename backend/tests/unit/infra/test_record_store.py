"""
Unit tests for RedisRecordStore using fakeredis.

These tests exercise:
- error translation (redis errors -> StoreError / OperationTimeoutError)
- the per-operation deadline
- optimistic transactions: commit, retry after a concurrent write, exhaustion
"""

from __future__ import annotations

import json
import logging

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from tokenvault.core.logger import JSONFormatter
from tokenvault.infra.redis.record_store import Deadline, RedisRecordStore
from tokenvault.services._shared.errors import (
    InvalidTokenError,
    OperationTimeoutError,
    StoreError,
    TransactionAbortedError,
)


class _BrokenRedis:
    """Client whose every command fails with ``exc``."""

    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise self.exc

        return _fail


def test_single_commands_decode_replies(store, fake_redis):
    fake_redis.hset("k", mapping={"a": "1", "_ttl": "60"})
    fake_redis.expire("k", 60)
    with store.operation("test.read") as op:
        assert op.hgetall("k") == {"a": "1", "_ttl": "60"}
        assert op.hget("k", "a") == "1"
        assert op.hget("k", "missing") is None
        assert op.exists("k") is True
        assert op.exists("nope") is False
        assert 0 < op.ttl("k") <= 60
        assert op.ttl("nope") == -2


def test_delete_ignores_absent_keys(store, fake_redis):
    fake_redis.set("a", "1")
    with store.operation("test.delete") as op:
        assert op.delete("a", "b") == 1
        assert op.delete() == 0


def test_connection_error_becomes_store_error():
    store = RedisRecordStore(r=_BrokenRedis(RedisConnectionError("refused")))
    with pytest.raises(StoreError) as exc:
        with store.operation("access.parse") as op:
            op.hgetall("k")
    assert isinstance(exc.value.__cause__, RedisConnectionError)
    assert not isinstance(exc.value, OperationTimeoutError)


def test_socket_timeout_becomes_operation_timeout():
    store = RedisRecordStore(r=_BrokenRedis(RedisTimeoutError("slow")), timeout=3)
    with pytest.raises(OperationTimeoutError) as exc:
        with store.operation("access.issue") as op:
            op.exists("k")
    assert exc.value.operation == "access.issue"
    assert exc.value.timeout == 3


def test_logic_errors_pass_through(store):
    with pytest.raises(InvalidTokenError):
        with store.operation("access.parse"):
            raise InvalidTokenError()


def test_spent_deadline_stops_before_the_next_round_trip(store):
    with store.operation("access.refresh") as op:
        op.deadline._expires = 0.0
        with pytest.raises(OperationTimeoutError):
            op.hgetall("k")


def test_deadline_remaining():
    deadline = Deadline("x", 5)
    assert 0 < deadline.remaining() <= 5
    deadline.check()


def test_transact_commits_queued_writes(store, fake_redis):
    def _write(pipe):
        assert not pipe.exists("k")
        pipe.multi()
        pipe.hset("k", "a", "1")
        return "done"

    with store.operation("test.tx") as op:
        assert op.transact(_write, "k") == "done"
    assert fake_redis.hget("k", "a") == b"1"


def test_transact_retries_after_a_concurrent_write(store, fake_redis):
    fake_redis.hset("counter", "n", "0")
    attempts = []

    def _increment(pipe):
        current = int(pipe.hget("counter", "n"))
        attempts.append(current)
        if len(attempts) == 1:
            # another client slips in between WATCH and EXEC
            fake_redis.hset("counter", "n", "10")
        pipe.multi()
        pipe.hset("counter", "n", current + 1)

    with store.operation("test.tx") as op:
        op.transact(_increment, "counter")

    assert attempts == [0, 10]
    assert fake_redis.hget("counter", "n") == b"11"


def test_transact_gives_up_after_max_retries(fake_redis):
    store = RedisRecordStore(r=fake_redis, max_watch_retries=2)
    fake_redis.set("k", "0")
    calls = []

    def _always_contended(pipe):
        calls.append(1)
        fake_redis.incr("k")
        pipe.multi()
        pipe.set("k", "mine")

    with pytest.raises(TransactionAbortedError) as exc:
        with store.operation("test.tx") as op:
            op.transact(_always_contended, "k")

    assert exc.value.attempts == 3
    assert exc.value.operation == "test.tx"
    assert len(calls) == 3
    assert fake_redis.get("k") == b"3"


def test_transaction_logs_carry_operation_fields(fake_redis, caplog):
    store = RedisRecordStore(r=fake_redis, timeout=7, max_watch_retries=1)
    fake_redis.set("k", "0")

    def _always_contended(pipe):
        fake_redis.incr("k")
        pipe.multi()
        pipe.set("k", "mine")

    caplog.set_level(logging.DEBUG, logger="tokenvault.infra.redis.record_store")
    with pytest.raises(TransactionAbortedError):
        with store.operation("test.tx") as op:
            op.transact(_always_contended, "k")

    records = [r for r in caplog.records if hasattr(r, "operation")]
    assert [(r.levelno, r.attempts) for r in records] == [
        (logging.DEBUG, 1),
        (logging.WARNING, 2),
    ]
    assert all(r.operation == "test.tx" and r.timeout == 7 for r in records)

    line = json.loads(JSONFormatter().format(records[-1]))
    assert line["operation"] == "test.tx"
    assert line["attempts"] == 2


def test_store_failure_logs_carry_operation_fields(caplog):
    store = RedisRecordStore(r=_BrokenRedis(RedisTimeoutError("slow")), timeout=3)
    with pytest.raises(OperationTimeoutError):
        with store.operation("access.issue") as op:
            op.exists("k")
    (record,) = [r for r in caplog.records if hasattr(r, "operation")]
    assert record.operation == "access.issue"
    assert record.timeout == 3


def test_transact_without_retry_aborts_on_first_conflict(store, fake_redis):
    fake_redis.set("k", "0")

    def _contended(pipe):
        fake_redis.incr("k")
        pipe.multi()
        pipe.set("k", "mine")

    with pytest.raises(TransactionAbortedError) as exc:
        with store.operation("test.tx") as op:
            op.transact(_contended, "k", retry=False)
    assert exc.value.attempts == 1

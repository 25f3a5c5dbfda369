# comments in English; reST docstrings
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, TypeVar, cast

import redis  # type: ignore[import-untyped]
from redis.client import Pipeline  # type: ignore[import-untyped]
from redis.exceptions import RedisError, WatchError  # type: ignore[import-untyped]
from redis.exceptions import TimeoutError as RedisTimeoutError  # type: ignore[import-untyped]

from tokenvault.models.fields import Record, decode_record, text
from tokenvault.services._shared.errors import (
    OperationTimeoutError,
    StoreError,
    TransactionAbortedError,
)

log = logging.getLogger(__name__)

T = TypeVar("T")


class Deadline:
    """Time budget of one engine operation (monotonic clock)."""

    __slots__ = ("operation", "timeout", "_expires")

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        self._expires = time.monotonic() + timeout

    def remaining(self) -> float:
        return self._expires - time.monotonic()

    def check(self) -> None:
        """:raises OperationTimeoutError: If the budget is spent."""
        if self.remaining() <= 0:
            raise OperationTimeoutError(self.operation, self.timeout)


@dataclass(slots=True)
class RedisRecordStore:
    """
    Redis-backed record store used by every token engine.

    The store is the only place that talks to redis-py. It bounds each engine
    operation by a :class:`Deadline`, translates redis exceptions into the
    infrastructure tier of the error taxonomy, and runs read-then-write
    sequences as optimistic ``WATCH``/``MULTI``/``EXEC`` transactions.

    :param r: A Redis client (already connected). ``decode_responses`` may be on or off.
    :param timeout: Per-operation budget in seconds.
    :param max_watch_retries: Extra attempts after a ``WatchError`` before giving up.
    """

    r: redis.Redis
    timeout: float = 10.0
    max_watch_retries: int = 5

    @contextmanager
    def operation(self, name: str) -> Iterator[StoreOperation]:
        """
        Open a bounded operation.

        Every redis error raised inside the block leaves it as a
        :class:`~tokenvault.services._shared.errors.StoreError`; logic errors
        pass through untouched.

        :param name: Operation name used in logs and errors (e.g. ``"access.issue"``).
        """
        op = StoreOperation(self, Deadline(name, self.timeout))
        try:
            yield op
        except RedisTimeoutError as exc:
            log.error(
                "Store timeout: operation=%s timeout=%ss",
                name,
                self.timeout,
                extra={"operation": name, "timeout": self.timeout},
            )
            raise OperationTimeoutError(name, self.timeout) from exc
        except WatchError as exc:
            # only reachable when a caller bypasses StoreOperation.transact
            raise TransactionAbortedError(name, 1) from exc
        except RedisError as exc:
            log.error(
                "Store failure: operation=%s error=%s",
                name,
                exc,
                extra={"operation": name, "timeout": self.timeout},
            )
            raise StoreError(f"{name} failed: {exc}") from exc


class StoreOperation:
    """Store commands bound to one operation's deadline."""

    __slots__ = ("store", "deadline")

    def __init__(self, store: RedisRecordStore, deadline: Deadline) -> None:
        self.store = store
        self.deadline = deadline

    @property
    def name(self) -> str:
        return self.deadline.operation

    # -------------------- single commands --------------------

    def hgetall(self, key: str) -> Record:
        self.deadline.check()
        return decode_record(cast(Mapping[Any, Any], self.store.r.hgetall(key)))

    def hget(self, key: str, field: str) -> str | None:
        self.deadline.check()
        raw = self.store.r.hget(key, field)
        return None if raw is None else text(raw)

    def exists(self, key: str) -> bool:
        self.deadline.check()
        return cast(int, self.store.r.exists(key)) == 1

    def ttl(self, key: str) -> int:
        """Redis ``TTL`` reply: seconds left, ``-1`` without expiry, ``-2`` when absent."""
        self.deadline.check()
        return cast(int, self.store.r.ttl(key))

    def delete(self, *keys: str) -> int:
        """Delete ``keys`` in one (atomic) ``DEL``; absent keys are ignored."""
        if not keys:
            return 0
        self.deadline.check()
        return cast(int, self.store.r.delete(*keys))

    # -------------------- transactions ------------------------

    def transact(self, fn: Callable[[Pipeline], T], *watch: str, retry: bool = True) -> T:
        """
        Run ``fn`` as an optimistic transaction over the ``watch`` keys.

        ``fn`` receives a pipeline in immediate mode: reads return values
        directly; it must call ``pipe.multi()`` before queueing writes. The
        queued commands are executed atomically when ``fn`` returns.

        :param fn: Callback performing reads, validations and queued writes.
        :param watch: Keys whose concurrent modification aborts the transaction.
        :param retry: Re-run ``fn`` after a concurrent modification.
        :returns: Whatever ``fn`` returned for the committed attempt.
        :raises TransactionAbortedError: When retries are exhausted (or disabled).
        """
        attempts = 0
        while True:
            self.deadline.check()
            attempts += 1
            try:
                with self.store.r.pipeline() as pipe:
                    pipe.watch(*watch)
                    result = fn(pipe)
                    pipe.execute()
                return result
            except WatchError as exc:
                if not retry or attempts > self.store.max_watch_retries:
                    log.warning(
                        "Transaction aborted: operation=%s attempts=%d",
                        self.name,
                        attempts,
                        extra=self._log_extra(attempts),
                    )
                    raise TransactionAbortedError(self.name, attempts) from exc
                log.debug(
                    "Concurrent modification, retrying: operation=%s attempt=%d",
                    self.name,
                    attempts,
                    extra=self._log_extra(attempts),
                )

    def _log_extra(self, attempts: int) -> dict[str, object]:
        return {"operation": self.name, "attempts": attempts, "timeout": self.store.timeout}

    def pipeline(self) -> Pipeline:
        """Plain ``MULTI``/``EXEC`` pipeline for unconditional batches."""
        self.deadline.check()
        return self.store.r.pipeline(transaction=True)


__all__ = ["Deadline", "RedisRecordStore", "StoreOperation"]

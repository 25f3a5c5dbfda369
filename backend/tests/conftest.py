"""Pytest fixtures: in-memory Redis, a controllable clock and ready-made engines.

Engines take the wall clock as a callable so record metadata
(``_created_at``, ``_expires_at``...) can be driven deterministically, while
store-native expiry stays with (fake) Redis.
"""

from __future__ import annotations

import fakeredis
import pytest

from tokenvault.infra.redis.record_store import RedisRecordStore
from tokenvault.services.access.service import AccessTokenEngine
from tokenvault.services.chain.service import ChainedTokenEngine
from tokenvault.services.manager.dto import CredentialMode, ManagerOptions
from tokenvault.services.manager.service import TokenManager
from tokenvault.services.refresh.dto import RotationPolicy
from tokenvault.services.refresh.service import RefreshTokenEngine

START = 1_700_000_000

ACCESS_PREFIX = "test:access:"
REFRESH_PREFIX = "test:refresh:"
CHAIN_PREFIX = "test:token:"


class FakeClock:
    """Callable wall clock (Unix seconds) that only moves when told to."""

    def __init__(self, start: float = START) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InterferingClock(FakeClock):
    """
    Clock that, once armed, writes to ``key`` through a second client each time it is read.

    Engines read the clock inside their optimistic transactions, after
    ``WATCH``; the write makes the pending ``EXEC`` fail exactly like a
    concurrent caller would.
    """

    def __init__(self, r: fakeredis.FakeRedis, start: float = START) -> None:
        super().__init__(start)
        self.r = r
        self.key: str | None = None
        self.interferences = 0

    def arm(self, key: str, times: int) -> None:
        self.key = key
        self.interferences = times

    def __call__(self) -> float:
        if self.key is not None and self.interferences > 0:
            self.interferences -= 1
            self.r.hset(self.key, "concurrent", str(self.interferences))
        return self.now


@pytest.fixture
def fake_redis():
    """Provide a fresh FakeRedis instance for each test."""
    r = fakeredis.FakeRedis()
    # instances may share one fake server; start clean
    r.flushall()
    return r


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def interfering_clock(fake_redis) -> InterferingClock:
    return InterferingClock(fake_redis)


@pytest.fixture
def store(fake_redis) -> RedisRecordStore:
    return RedisRecordStore(r=fake_redis, timeout=10.0, max_watch_retries=5)


@pytest.fixture
def access_engine(store, clock) -> AccessTokenEngine:
    return AccessTokenEngine(store, ACCESS_PREFIX, ttl=60, clock=clock)


@pytest.fixture
def refresh_engine(store, access_engine, clock) -> RefreshTokenEngine:
    return RefreshTokenEngine(
        store,
        REFRESH_PREFIX,
        ttl=1200,
        access=access_engine,
        rotation=RotationPolicy.REUSABLE,
        clock=clock,
    )


@pytest.fixture
def one_shot_engine(store, access_engine, clock) -> RefreshTokenEngine:
    return RefreshTokenEngine(
        store,
        REFRESH_PREFIX,
        ttl=1200,
        access=access_engine,
        rotation=RotationPolicy.ONE_SHOT,
        clock=clock,
    )


@pytest.fixture
def chain_engine(store, clock) -> ChainedTokenEngine:
    return ChainedTokenEngine(store, CHAIN_PREFIX, ttl=60, clock=clock)


@pytest.fixture
def pair_options() -> ManagerOptions:
    return ManagerOptions(
        access_token_ttl=60,
        access_token_key_prefix=ACCESS_PREFIX,
        refresh_token_ttl=1200,
        refresh_token_key_prefix=REFRESH_PREFIX,
    )


@pytest.fixture
def manager(fake_redis, pair_options, clock) -> TokenManager:
    return TokenManager(fake_redis, pair_options, clock=clock)


@pytest.fixture
def chained_manager(fake_redis, clock) -> TokenManager:
    options = ManagerOptions(
        access_token_ttl=60,
        key_prefix=CHAIN_PREFIX,
        mode=CredentialMode.CHAINED,
    )
    return TokenManager(fake_redis, options, clock=clock)

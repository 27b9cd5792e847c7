# tests/conftest.py — v1
"""Shared test fixtures for unit tests.

Provides sample label drafts, a fixed clock, a zero-delay retry policy,
temp SQLite stores and a dict-backed Redis double.
No external services: Redis is faked, SQLite lives in tmp_path.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from pathlib import Path

import pytest

from labelgate.core.models import DraftIssue, LabelDraft, ParsedIngredient
from labelgate.store.retry import RetryPolicy
from labelgate.store.sqlite_store import SqliteRowStore
from labelgate.tracking.metrics import MetricsRegistry


# === FIXTURES: Sample data ===


@pytest.fixture
def sample_draft() -> LabelDraft:
    """High-confidence draft with two complete ingredient rows."""
    return LabelDraft(
        serving_size="1 capsule",
        ingredients=[
            ParsedIngredient(
                name="Vitamin D3 (as Cholecalciferol)", amount=125, unit="mcg",
                dv_percent=625, confidence=0.95, raw_line="Vitamin D3 125 mcg 625%",
            ),
            ParsedIngredient(
                name="Ashwagandha Root Extract", amount=300, unit="mg",
                confidence=0.9, raw_line="Ashwagandha Root Extract 300 mg",
            ),
        ],
        confidence_score=0.92,
        parse_coverage=0.9,
    )


@pytest.fixture
def weak_draft() -> LabelDraft:
    """Low-confidence draft flagged with a blocking issue."""
    return LabelDraft(
        ingredients=[ParsedIngredient(name="Magnesium", amount=None, unit=None)],
        confidence_score=0.4,
        parse_coverage=0.3,
        issues=[DraftIssue(type="low_coverage", message="Only 30% of lines parsed")],
    )


# === FIXTURES: Time and retry ===


class FixedClock:
    """Settable clock for TTL and expiry tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts, no backoff."""
    return RetryPolicy(retries=3, base_delay_s=0.0, max_delay_s=0.0)


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry(flush_interval_s=3600)


# === FIXTURES: Stores ===


@pytest.fixture
def sqlite_store(tmp_path: Path):
    store = SqliteRowStore(db_path=tmp_path / "labelgate.db")
    yield store
    store.close()


class FakeRedis:
    """Dict-backed subset of the redis-py client used by RedisRowStore."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.closed = False

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hset(self, key, field=None, value=None, mapping=None):
        target = self.hashes.setdefault(key, {})
        if field is not None:
            target[field] = value
        if mapping:
            target.update(mapping)
        return 1

    def hsetnx(self, key, field, value):
        target = self.hashes.setdefault(key, {})
        if field in target:
            return 0
        target[field] = value
        return 1

    def exists(self, key):
        return int(key in self.hashes)

    def delete(self, *keys):
        return sum(1 for k in keys if self.hashes.pop(k, None) is not None)

    def zadd(self, key, mapping, nx=False):
        target = self.zsets.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            if nx and member in target:
                continue
            added += member not in target
            target[member] = score
        return added

    def zrangebyscore(self, key, low, high):
        target = self.zsets.get(key, {})
        exclusive = str(high).startswith("(")
        limit = float(str(high).lstrip("("))
        return [
            m for m, s in sorted(target.items(), key=lambda kv: kv[1])
            if (s < limit if exclusive else s <= limit)
        ]

    def zrevrange(self, key, start, end):
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        return [m for m, _ in ordered[start:end + 1]]

    def zrem(self, key, *members):
        target = self.zsets.get(key, {})
        return sum(1 for m in members if target.pop(m, None) is not None)

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def close(self):
        self.closed = True


class FakePipeline:
    """Queues commands and applies them all or none on execute()."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._commands.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        saved = copy.deepcopy((self._redis.hashes, self._redis.zsets))
        try:
            return [
                getattr(self._redis, name)(*args, **kwargs)
                for name, args, kwargs in self._commands
            ]
        except Exception:
            self._redis.hashes, self._redis.zsets = saved
            raise
        finally:
            self._commands = []


class FakeRedisError(Exception):
    pass


class FakeRedisConnectionError(FakeRedisError):
    pass


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def redis_store(fake_redis: FakeRedis):
    """RedisRowStore wired to FakeRedis without importing redis."""
    from labelgate.store.redis_store import RedisRowStore

    store = RedisRowStore.__new__(RedisRowStore)
    store._client = fake_redis
    store._prefix = "test:"
    store._redis_error = FakeRedisError
    store._transient_errors = (FakeRedisConnectionError,)
    return store


@pytest.fixture
def redis_connection_error() -> type[Exception]:
    return FakeRedisConnectionError


@pytest.fixture
def make_clock():
    return FixedClock

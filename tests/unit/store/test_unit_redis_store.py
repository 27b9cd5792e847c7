# tests/unit/store/test_unit_redis_store.py — v1
"""Tests for store/redis_store.py — dict-backed Redis double."""

from __future__ import annotations

import sys
from datetime import timedelta

import pytest

from labelgate.store.errors import StoreError, StoreErrorKind

T1 = "2026-01-01T00:00:00.000000+00:00"
T2 = "2026-01-02T00:00:00.000000+00:00"
T3 = "2026-01-03T00:00:00.000000+00:00"


def _ocr_row(image_hash="h1", confidence=0.9):
    return {
        "image_hash": image_hash,
        "vision_raw": None,
        "parsed_ingredients": {"ingredients": []},
        "analysis": None,
        "confidence": confidence,
    }


class TestRedisRowStore:
    def test_import_error_without_redis(self):
        """Clear ImportError when redis is not available."""
        redis_mod = sys.modules.get("redis")
        sys.modules["redis"] = None  # type: ignore[assignment]
        try:
            from labelgate.store.redis_store import RedisRowStore
            with pytest.raises(ImportError, match="redis"):
                RedisRowStore(redis_url="redis://localhost")
        finally:
            if redis_mod is not None:
                sys.modules["redis"] = redis_mod
            else:
                sys.modules.pop("redis", None)

    @pytest.mark.asyncio
    async def test_upsert_and_fetch(self, redis_store, fake_redis):
        await redis_store.upsert_ocr_row(_ocr_row(), created_at=T1)
        row = (await redis_store.fetch_ocr_row("h1")).data
        assert row["image_hash"] == "h1"
        assert row["parsed_ingredients"] == {"ingredients": []}
        assert row["vision_raw"] is None
        assert row["confidence"] == 0.9
        assert row["created_at"] == T1
        assert "test:ocr_cache:h1" in fake_redis.hashes

    @pytest.mark.asyncio
    async def test_fetch_missing(self, redis_store):
        assert (await redis_store.fetch_ocr_row("nope")).data is None

    @pytest.mark.asyncio
    async def test_created_at_written_once(self, redis_store, fake_redis):
        await redis_store.upsert_ocr_row(_ocr_row(confidence=0.5), created_at=T1)
        await redis_store.upsert_ocr_row(_ocr_row(confidence=0.7), created_at=T3)
        row = (await redis_store.fetch_ocr_row("h1")).data
        assert row["created_at"] == T1
        assert row["confidence"] == 0.7
        index = fake_redis.zsets["test:ocr_cache:by_created_at"]
        assert len(index) == 1

    @pytest.mark.asyncio
    async def test_update_analysis(self, redis_store):
        assert (await redis_store.update_ocr_analysis("h1", {"status": "success"})).data == 0
        await redis_store.upsert_ocr_row(_ocr_row(), created_at=T1)
        assert (await redis_store.update_ocr_analysis("h1", {"status": "success"})).data == 1
        row = (await redis_store.fetch_ocr_row("h1")).data
        assert row["analysis"] == {"status": "success"}

    @pytest.mark.asyncio
    async def test_delete_before(self, redis_store, fake_redis):
        await redis_store.upsert_ocr_row(_ocr_row("old"), created_at=T1)
        await redis_store.upsert_ocr_row(_ocr_row("edge"), created_at=T2)
        deleted = (await redis_store.delete_ocr_rows_before(T2)).data
        assert deleted == ["old"]
        assert "test:ocr_cache:old" not in fake_redis.hashes
        assert "old" not in fake_redis.zsets["test:ocr_cache:by_created_at"]
        assert (await redis_store.fetch_ocr_row("edge")).data is not None

    @pytest.mark.asyncio
    async def test_snapshot_latest_and_partial_update(self, redis_store):
        base = {"key": "k", "source": "barcode", "created_at": T1}
        await redis_store.upsert_snapshot(
            {**base, "id": "a", "payload_json": {"n": 1}, "updated_at": T1,
             "analysis_json": {"v": 1}},
            ["payload_json", "updated_at"],
        )
        await redis_store.upsert_snapshot(
            {**base, "id": "b", "payload_json": {"n": 2}, "updated_at": T2},
            ["payload_json", "updated_at"],
        )
        row = (await redis_store.fetch_latest_snapshot("k", "barcode", "updated_at")).data
        assert row["id"] == "b"

        await redis_store.upsert_snapshot(
            {**base, "id": "a", "payload_json": {"n": 3}, "updated_at": T3,
             "analysis_json": None},
            ["payload_json", "updated_at"],
        )
        row = (await redis_store.fetch_latest_snapshot("k", "barcode", "updated_at")).data
        assert row["id"] == "a"
        assert row["payload_json"] == {"n": 3}
        assert row["analysis_json"] == {"v": 1}

    @pytest.mark.asyncio
    async def test_snapshot_missing(self, redis_store):
        assert (await redis_store.fetch_latest_snapshot("k", "label", "created_at")).data is None

    @pytest.mark.asyncio
    async def test_connection_errors_are_transient(
        self, redis_store, fake_redis, redis_connection_error
    ):
        def boom(key):
            raise redis_connection_error("Connection refused")

        fake_redis.hgetall = boom
        with pytest.raises(StoreError) as exc_info:
            await redis_store.fetch_ocr_row("h1")
        assert exc_info.value.kind is StoreErrorKind.TRANSIENT

    def test_close(self, redis_store, fake_redis):
        redis_store.close()
        assert fake_redis.closed is True


class TestRedisAtomicUpserts:
    @pytest.mark.asyncio
    async def test_failed_ocr_upsert_leaves_nothing(
        self, redis_store, fake_redis, redis_connection_error
    ):
        def boom(key, field, value):
            raise redis_connection_error("Connection reset by peer")

        fake_redis.hsetnx = boom
        with pytest.raises(StoreError) as exc_info:
            await redis_store.upsert_ocr_row(_ocr_row(), created_at=T1)
        assert exc_info.value.kind is StoreErrorKind.TRANSIENT
        assert "test:ocr_cache:h1" not in fake_redis.hashes
        assert "h1" not in fake_redis.zsets.get("test:ocr_cache:by_created_at", {})

    @pytest.mark.asyncio
    async def test_failed_result_cache_write_can_be_retried(
        self, redis_store, fake_redis, redis_connection_error, sample_draft, fast_retry, clock
    ):
        from labelgate.cache.result_cache import ResultCache

        original = fake_redis.hsetnx

        def boom(key, field, value):
            raise redis_connection_error("Connection reset by peer")

        cache = ResultCache(redis_store, retry=fast_retry, clock=clock)
        fake_redis.hsetnx = boom
        assert await cache.set("h1", parsed_ingredients=sample_draft, confidence=0.9) is False
        assert await cache.get("h1") is None
        assert fake_redis.hashes == {}

        fake_redis.hsetnx = original
        assert await cache.set("h1", parsed_ingredients=sample_draft, confidence=0.9) is True
        assert (await cache.get("h1")).confidence == 0.9
        clock.now = clock.now + timedelta(days=2)
        assert await cache.cleanup_expired(1) == 1
        assert fake_redis.hashes == {}


class TestRedisSnapshotReindex:
    @pytest.mark.asyncio
    async def test_moved_snapshot_leaves_old_index(self, redis_store, fake_redis):
        row = {"id": "s1", "key": "0123", "source": "barcode", "payload_json": {"n": 1},
               "created_at": T1, "updated_at": T1}
        columns = ["key", "source", "payload_json", "updated_at"]
        await redis_store.upsert_snapshot(row, columns)
        await redis_store.upsert_snapshot(
            {**row, "key": "9999", "source": "label", "updated_at": T2}, columns
        )

        for order in ("updated_at", "created_at"):
            old = await redis_store.fetch_latest_snapshot("0123", "barcode", order)
            assert old.data is None
            new = (await redis_store.fetch_latest_snapshot("9999", "label", order)).data
            assert new["id"] == "s1"
        assert "s1" not in fake_redis.zsets["test:snapshots:updated_at:barcode:0123"]
        # created_at survives the move
        assert new["created_at"] == T1

    @pytest.mark.asyncio
    async def test_moved_snapshot_through_cache(self, redis_store, fast_retry, clock):
        from labelgate.cache.models import SupplementSnapshot
        from labelgate.cache.snapshot_cache import SnapshotCache

        cache = SnapshotCache(redis_store, retry=fast_retry, clock=clock)
        snapshot = SupplementSnapshot(snapshot_id="s1", source="barcode")
        assert await cache.store("0123", "barcode", snapshot) is True
        assert await cache.store("9999", "label", snapshot) is True
        assert await cache.get("0123", "barcode") is None
        assert (await cache.get("9999", "label")).snapshot.snapshot_id == "s1"

    @pytest.mark.asyncio
    async def test_same_key_keeps_index(self, redis_store, fake_redis):
        row = {"id": "s1", "key": "k", "source": "mixed", "payload_json": {},
               "created_at": T1, "updated_at": T1}
        await redis_store.upsert_snapshot(row, ["payload_json", "updated_at"])
        await redis_store.upsert_snapshot(
            {**row, "updated_at": T3}, ["payload_json", "updated_at"]
        )
        index = fake_redis.zsets["test:snapshots:updated_at:mixed:k"]
        assert list(index) == ["s1"]

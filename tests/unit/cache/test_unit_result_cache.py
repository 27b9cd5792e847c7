# tests/unit/cache/test_unit_result_cache.py — v1
"""Tests for cache/result_cache.py — OCR result cache over a row store."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from labelgate.cache.models import OpaquePayload, VisionTextPayload
from labelgate.cache.result_cache import ResultCache, has_completed_analysis, has_draft_only
from labelgate.core.models import SupplementAnalysis
from labelgate.store.errors import StoreError, StoreErrorKind
from labelgate.store.retry import StoreResponse


@pytest.fixture
def cache(sqlite_store, metrics, fast_retry, clock):
    return ResultCache(sqlite_store, metrics=metrics, retry=fast_retry, clock=clock)


def _failing_store(**methods) -> MagicMock:
    store = MagicMock()
    for name, mock in methods.items():
        setattr(store, name, mock)
    return store


class TestResultCacheRoundTrip:
    @pytest.mark.asyncio
    async def test_set_then_get(self, cache, sample_draft, metrics, clock):
        vision = VisionTextPayload(full_text="Supplement Facts\nVitamin D3 125 mcg")
        assert await cache.set(
            "hash-1", parsed_ingredients=sample_draft, confidence=0.92, vision_raw=vision
        ) is True

        record = await cache.get("hash-1")
        assert record is not None
        assert record.image_hash == "hash-1"
        assert record.parsed_ingredients == sample_draft
        assert record.vision_raw == vision
        assert record.confidence == 0.92
        assert record.analysis is None
        assert record.created_at == clock.now

        totals = metrics.snapshot().totals
        assert totals["ocr_cache_write_success"] == 1
        assert totals["ocr_cache_hit"] == 1

    @pytest.mark.asyncio
    async def test_miss(self, cache, metrics):
        assert await cache.get("unknown") is None
        assert metrics.snapshot().totals["ocr_cache_miss"] == 1

    @pytest.mark.asyncio
    async def test_first_write_keeps_created_at(self, cache, sample_draft, weak_draft, clock):
        first_at = clock.now
        await cache.set("hash-1", parsed_ingredients=sample_draft, confidence=0.9)
        clock.now = first_at + timedelta(days=3)
        await cache.set("hash-1", parsed_ingredients=weak_draft, confidence=0.4)

        record = await cache.get("hash-1")
        assert record.created_at == first_at
        assert record.parsed_ingredients == weak_draft
        assert record.confidence == 0.4

    @pytest.mark.asyncio
    async def test_legacy_vision_payload_wrapped(self, sqlite_store, cache, sample_draft):
        await sqlite_store.upsert_ocr_row(
            {
                "image_hash": "legacy",
                "vision_raw": {"textAnnotations": [{"description": "Zinc"}]},
                "parsed_ingredients": sample_draft.model_dump(mode="json"),
                "confidence": 0.9,
            },
            created_at="2026-02-01T00:00:00.000000+00:00",
        )
        record = await cache.get("legacy")
        assert isinstance(record.vision_raw, OpaquePayload)
        assert record.vision_raw.data["textAnnotations"][0]["description"] == "Zinc"


class TestResultCacheAnalysis:
    @pytest.mark.asyncio
    async def test_update_analysis(self, cache, sample_draft):
        await cache.set("hash-1", parsed_ingredients=sample_draft, confidence=0.9)
        record = await cache.get("hash-1")
        assert has_draft_only(record)

        analysis = SupplementAnalysis(brand="BrandX", summary="ok", custom_field=1)
        assert await cache.update_analysis("hash-1", analysis) is True

        record = await cache.get("hash-1")
        assert has_completed_analysis(record)
        assert not has_draft_only(record)
        assert record.parsed_ingredients == sample_draft
        assert record.analysis.model_extra["custom_field"] == 1

    @pytest.mark.asyncio
    async def test_update_missing_row(self, cache):
        assert await cache.update_analysis("nope", SupplementAnalysis()) is False

    @pytest.mark.asyncio
    async def test_partial_analysis_not_completed(self, cache, sample_draft):
        await cache.set(
            "hash-1", parsed_ingredients=sample_draft, confidence=0.9,
            analysis=SupplementAnalysis(status="partial"),
        )
        record = await cache.get("hash-1")
        assert not has_completed_analysis(record)
        assert not has_draft_only(record)


class TestResultCacheCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_expired(self, cache, sample_draft, clock, metrics):
        start = clock.now
        await cache.set("old", parsed_ingredients=sample_draft, confidence=0.9)
        clock.now = start + timedelta(days=20)
        await cache.set("recent", parsed_ingredients=sample_draft, confidence=0.9)

        clock.now = start + timedelta(days=31)
        assert await cache.cleanup_expired(30) == 1
        assert await cache.get("old") is None
        assert await cache.get("recent") is not None
        assert metrics.snapshot().totals["ocr_cache_cleanup_deleted"] == 1

    @pytest.mark.asyncio
    async def test_cleanup_nothing(self, cache):
        assert await cache.cleanup_expired(30) == 0

    @pytest.mark.asyncio
    async def test_cleanup_failure_returns_zero(self, fast_retry):
        store = _failing_store(
            delete_ocr_rows_before=AsyncMock(side_effect=StoreError("permission denied"))
        )
        cache = ResultCache(store, retry=fast_retry)
        assert await cache.cleanup_expired(30) == 0


class TestResultCacheFailures:
    @pytest.mark.asyncio
    async def test_read_error_fails_open(self, fast_retry, metrics):
        store = _failing_store(fetch_ocr_row=AsyncMock(side_effect=StoreError("denied")))
        cache = ResultCache(store, metrics=metrics, retry=fast_retry)
        assert await cache.get("hash-1") is None
        assert metrics.snapshot().totals["ocr_cache_read_error"] == 1
        store.fetch_ocr_row.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_transient_read_retried(self, fast_retry, metrics):
        fetch = AsyncMock(side_effect=[
            StoreError("locked", kind=StoreErrorKind.TRANSIENT),
            StoreResponse(data=None),
        ])
        cache = ResultCache(_failing_store(fetch_ocr_row=fetch), metrics=metrics, retry=fast_retry)
        assert await cache.get("hash-1") is None
        totals = metrics.snapshot().totals
        assert totals["store_retry"] == 1
        assert totals["ocr_cache_miss"] == 1
        assert totals["ocr_cache_read_error"] == 0

    @pytest.mark.asyncio
    async def test_write_failure_returns_false(self, fast_retry, metrics, sample_draft):
        upsert = AsyncMock(return_value=StoreResponse(error=Exception("unavailable"), status=503))
        cache = ResultCache(_failing_store(upsert_ocr_row=upsert), metrics=metrics, retry=fast_retry)
        ok = await cache.set("hash-1", parsed_ingredients=sample_draft, confidence=0.9)
        assert ok is False
        assert upsert.await_count == 3
        totals = metrics.snapshot().totals
        assert totals["ocr_cache_write_failed"] == 1
        assert totals["store_retry"] == 2

    @pytest.mark.asyncio
    async def test_undecodable_row_discarded(self, fast_retry, metrics):
        fetch = AsyncMock(return_value=StoreResponse(data={
            "image_hash": "hash-1",
            "parsed_ingredients": {"confidence_score": "not a number"},
            "created_at": "2026-01-01T00:00:00+00:00",
        }))
        cache = ResultCache(_failing_store(fetch_ocr_row=fetch), metrics=metrics, retry=fast_retry)
        assert await cache.get("hash-1") is None
        assert metrics.snapshot().totals["ocr_cache_read_error"] == 1

    @pytest.mark.asyncio
    async def test_bad_created_at_discarded(self, fast_retry):
        fetch = AsyncMock(return_value=StoreResponse(data={
            "image_hash": "hash-1",
            "parsed_ingredients": {},
            "created_at": "yesterday",
        }))
        cache = ResultCache(_failing_store(fetch_ocr_row=fetch), retry=fast_retry)
        assert await cache.get("hash-1") is None

    @pytest.mark.asyncio
    async def test_without_metrics(self, sqlite_store, sample_draft, fast_retry):
        cache = ResultCache(sqlite_store, retry=fast_retry)
        assert await cache.set("h", parsed_ingredients=sample_draft, confidence=0.9)
        assert await cache.get("h") is not None

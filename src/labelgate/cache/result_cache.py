# src/labelgate/cache/result_cache.py — v1
"""Result cache for label extraction and analysis, keyed by image fingerprint.

First write wins for created_at (TTL is anchored to the original capture),
last write wins for content. Store failures never reach the caller: reads
fail open to a miss, writes are best-effort and only logged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

from labelgate.cache.fingerprint import short_hash
from labelgate.cache.models import CachedResult, OpaquePayload, VisionTextPayload
from labelgate.core.models import LabelDraft, SupplementAnalysis
from labelgate.store.base_store import BaseRowStore, format_timestamp, parse_timestamp
from labelgate.store.retry import (
    RetryOutcome,
    RetryPolicy,
    StoreResponse,
    extract_error_meta,
    with_retry,
)
from labelgate.tracking.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResultCache:
    """Durable cache of OCR drafts and completed analyses."""

    def __init__(
        self,
        store: BaseRowStore,
        metrics: MetricsRegistry | None = None,
        retry: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self._retry = retry
        self._clock = clock

    async def get(self, image_hash: str) -> CachedResult | None:
        """Look up a cached result. Misses and store failures both yield None."""
        outcome = await self._run(
            lambda: self._store.fetch_ocr_row(image_hash), "ocr_cache.get"
        )
        if not outcome.ok:
            self._log_failure(logging.WARNING, "read", image_hash, outcome)
            self._count("ocr_cache_read_error")
            return None
        if outcome.data is None:
            logger.debug("OCR cache miss for %s", short_hash(image_hash))
            self._count("ocr_cache_miss")
            return None
        try:
            record = _row_to_result(outcome.data)
        except ValueError as e:
            logger.warning(
                "Discarding undecodable OCR cache row %s: %s", short_hash(image_hash), e
            )
            self._count("ocr_cache_read_error")
            return None
        self._count("ocr_cache_hit")
        return record

    async def set(
        self,
        image_hash: str,
        *,
        parsed_ingredients: LabelDraft,
        confidence: float,
        vision_raw: VisionTextPayload | OpaquePayload | None = None,
        analysis: SupplementAnalysis | None = None,
    ) -> bool:
        """Upsert a result. created_at is only set when the row is new.

        Returns:
            True if the write was persisted.
        """
        row = {
            "image_hash": image_hash,
            "vision_raw": vision_raw.model_dump(mode="json") if vision_raw else None,
            "parsed_ingredients": parsed_ingredients.model_dump(mode="json"),
            "analysis": analysis.model_dump(mode="json") if analysis else None,
            "confidence": confidence,
        }
        created_at = format_timestamp(self._clock())
        outcome = await self._run(
            lambda: self._store.upsert_ocr_row(row, created_at), "ocr_cache.set"
        )
        if not outcome.ok:
            self._log_failure(logging.ERROR, "write", image_hash, outcome)
            self._count("ocr_cache_write_failed")
            return False
        self._count("ocr_cache_write_success")
        return True

    async def update_analysis(self, image_hash: str, analysis: SupplementAnalysis) -> bool:
        """Attach a completed analysis to an existing row, leaving the draft alone.

        Returns:
            True if a row was updated.
        """
        outcome = await self._run(
            lambda: self._store.update_ocr_analysis(
                image_hash, analysis.model_dump(mode="json")
            ),
            "ocr_cache.update_analysis",
        )
        if not outcome.ok:
            self._log_failure(logging.ERROR, "analysis update", image_hash, outcome)
            self._count("ocr_cache_write_failed")
            return False
        if not outcome.data:
            logger.debug("No OCR cache row to update for %s", short_hash(image_hash))
            return False
        self._count("ocr_cache_write_success")
        return True

    async def cleanup_expired(self, ttl_days: int) -> int:
        """Delete rows created more than ttl_days ago.

        Returns:
            Number of rows deleted; 0 when the sweep failed.
        """
        cutoff = format_timestamp(self._clock() - timedelta(days=ttl_days))
        outcome = await self._run(
            lambda: self._store.delete_ocr_rows_before(cutoff), "ocr_cache.cleanup"
        )
        if not outcome.ok:
            meta = extract_error_meta(outcome.error, outcome.status, outcome.trace_id)
            logger.error(
                "OCR cache cleanup failed after %d attempt(s): status=%s trace_id=%s %s",
                outcome.attempts, meta.status, meta.trace_id, meta.message,
            )
            return 0
        count = len(outcome.data or [])
        if count > 0:
            logger.info("Cleaned up %d expired OCR cache entries", count)
            self._count("ocr_cache_cleanup_deleted", count)
        return count

    async def _run(
        self, operation: Callable[[], Awaitable[StoreResponse[T]]], label: str
    ) -> RetryOutcome[T]:
        return await with_retry(
            operation, self._retry, on_retry=self._on_retry, label=label
        )

    def _on_retry(self, attempt: int, error: BaseException) -> None:
        self._count("store_retry")

    def _count(self, name: str, amount: int = 1) -> None:
        if self._metrics is not None:
            self._metrics.increment(name, amount)

    @staticmethod
    def _log_failure(
        level: int, action: str, image_hash: str, outcome: RetryOutcome[Any]
    ) -> None:
        meta = extract_error_meta(outcome.error, outcome.status, outcome.trace_id)
        logger.log(
            level,
            "OCR cache %s failed for %s after %d attempt(s): "
            "status=%s code=%s trace_id=%s %s",
            action, short_hash(image_hash), outcome.attempts,
            meta.status, meta.code, meta.trace_id, meta.message,
        )


def has_completed_analysis(record: CachedResult) -> bool:
    """True when the cached analysis finished successfully."""
    return record.analysis is not None and record.analysis.status == "success"


def has_draft_only(record: CachedResult) -> bool:
    """True when only the draft is cached: needs confirmation or re-analysis."""
    return record.parsed_ingredients is not None and record.analysis is None


def _row_to_result(row: dict[str, Any]) -> CachedResult:
    vision_raw = row.get("vision_raw")
    if isinstance(vision_raw, dict) and "kind" not in vision_raw:
        vision_raw = {"kind": "opaque", "data": vision_raw}
    created_at = parse_timestamp(row.get("created_at"))
    if created_at is None:
        raise ValueError(f"invalid created_at: {row.get('created_at')!r}")
    return CachedResult.model_validate({
        "image_hash": row.get("image_hash"),
        "vision_raw": vision_raw,
        "parsed_ingredients": row.get("parsed_ingredients"),
        "analysis": row.get("analysis"),
        "confidence": row.get("confidence") or 0.0,
        "created_at": created_at,
    })

# src/labelgate/cache/snapshot_cache.py — v1
"""Snapshot cache keyed by (key, source).

Reads pick the most recent row by updated_at. Deployments whose snapshots
table predates updated_at answer with a missing-column error; the read is
then retried ordered by created_at. Expiry is lazy: an expired row stays
stored but reads treat it as absent.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from labelgate.cache.models import (
    SNAPSHOT_SOURCES,
    SnapshotCacheRecord,
    SnapshotSource,
    SupplementSnapshot,
)
from labelgate.cache.result_cache import utcnow
from labelgate.logging.context import clear_context, set_cache_context
from labelgate.store.base_store import BaseRowStore, format_timestamp, parse_timestamp
from labelgate.store.errors import StoreError, StoreErrorKind
from labelgate.store.retry import RetryOutcome, RetryPolicy, extract_error_meta, with_retry
from labelgate.tracking.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

PREFERRED_ORDER_COLUMN = "updated_at"
FALLBACK_ORDER_COLUMN = "created_at"


class _Unset(Enum):
    UNSET = "UNSET"


UNSET = _Unset.UNSET
"""Marks an omitted optional column: the stored value is left untouched."""


class SnapshotCache:
    """Cache of resolved product snapshots and their analysis payloads."""

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

    async def get(self, key: str, source: SnapshotSource) -> SnapshotCacheRecord | None:
        """Most recent unexpired snapshot for (key, source), or None."""
        set_cache_context(f"{source}:{key}", operation="snapshot_get")
        try:
            return await self._get(key, source)
        finally:
            clear_context()

    async def _get(self, key: str, source: str) -> SnapshotCacheRecord | None:
        outcome = await self._fetch(key, source, PREFERRED_ORDER_COLUMN)
        if not outcome.ok and _is_missing_column(outcome.error):
            logger.info(
                "Snapshot column %s unavailable, ordering by %s",
                PREFERRED_ORDER_COLUMN, FALLBACK_ORDER_COLUMN,
            )
            outcome = await self._fetch(key, source, FALLBACK_ORDER_COLUMN)

        if not outcome.ok:
            meta = extract_error_meta(outcome.error, outcome.status, outcome.trace_id)
            logger.warning(
                "Snapshot cache read failed for %s/%s after %d attempt(s): "
                "status=%s trace_id=%s %s",
                source, key, outcome.attempts, meta.status, meta.trace_id, meta.message,
            )
            self._count("snapshot_cache_miss")
            return None

        row = outcome.data
        if row is None:
            self._count("snapshot_cache_miss")
            return None

        expires_at = parse_timestamp(row.get("expires_at"))
        if expires_at is not None and expires_at <= self._clock():
            logger.debug("Snapshot %s/%s expired at %s", source, key, expires_at)
            self._count("snapshot_cache_miss")
            return None

        self._count("snapshot_cache_hit")
        return SnapshotCacheRecord(
            snapshot=_validate_snapshot(row, key, source),
            analysis_payload=row.get("analysis_json"),
            expires_at=expires_at,
        )

    async def store(
        self,
        key: str,
        source: SnapshotSource,
        snapshot: SupplementSnapshot,
        *,
        analysis_payload: dict[str, Any] | None | _Unset = UNSET,
        expires_at: datetime | None | _Unset = UNSET,
    ) -> bool:
        """Upsert a snapshot by its snapshot_id.

        analysis_payload and expires_at are only written when passed; an
        explicit None clears the stored value.

        Returns:
            True if the write was persisted.

        Raises:
            ValueError: If source is not barcode, label or mixed.
        """
        if source not in SNAPSHOT_SOURCES:
            raise ValueError(f"Unsupported snapshot source: {source!r}")

        set_cache_context(f"{source}:{key}", operation="snapshot_store")
        try:
            return await self._store_row(key, source, snapshot, analysis_payload, expires_at)
        finally:
            clear_context()

    async def _store_row(
        self,
        key: str,
        source: str,
        snapshot: SupplementSnapshot,
        analysis_payload: dict[str, Any] | None | _Unset,
        expires_at: datetime | None | _Unset,
    ) -> bool:
        now = self._clock()
        updated_at = snapshot.updated_at or now
        payload = snapshot.model_copy(update={"updated_at": updated_at})
        row: dict[str, Any] = {
            "id": snapshot.snapshot_id,
            "key": key,
            "source": source,
            "payload_json": payload.model_dump(mode="json"),
            "created_at": format_timestamp(now),
            "updated_at": format_timestamp(updated_at),
        }
        update_columns = ["key", "source", "payload_json", "updated_at"]
        if analysis_payload is not UNSET:
            row["analysis_json"] = analysis_payload
            update_columns.append("analysis_json")
        if expires_at is not UNSET:
            row["expires_at"] = format_timestamp(expires_at) if expires_at else None
            update_columns.append("expires_at")

        outcome = await with_retry(
            lambda: self._store.upsert_snapshot(row, update_columns),
            self._retry,
            on_retry=self._on_retry,
            label="snapshots.store",
        )
        if not outcome.ok:
            meta = extract_error_meta(outcome.error, outcome.status, outcome.trace_id)
            logger.warning(
                "Snapshot cache write failed for %s/%s after %d attempt(s): "
                "status=%s trace_id=%s %s",
                source, key, outcome.attempts, meta.status, meta.trace_id, meta.message,
            )
            self._count("snapshot_write_failed")
            return False
        self._count("snapshot_write_success")
        return True

    async def _fetch(
        self, key: str, source: str, order_by: str
    ) -> RetryOutcome[dict[str, Any]]:
        return await with_retry(
            lambda: self._store.fetch_latest_snapshot(key, source, order_by),
            self._retry,
            on_retry=self._on_retry,
            label=f"snapshots.get[{order_by}]",
        )

    def _on_retry(self, attempt: int, error: BaseException) -> None:
        self._count("store_retry")

    def _count(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(name)


def _is_missing_column(error: BaseException | None) -> bool:
    return isinstance(error, StoreError) and error.kind is StoreErrorKind.MISSING_COLUMN


def _validate_snapshot(row: dict[str, Any], key: str, source: str) -> SupplementSnapshot:
    """Validate the stored payload, substituting a minimal error snapshot."""
    try:
        return SupplementSnapshot.model_validate(row.get("payload_json"))
    except ValidationError as e:
        logger.warning("Invalid snapshot payload for %s/%s: %s", source, key, e)
    row_source = row.get("source")
    return SupplementSnapshot(
        snapshot_id=str(row.get("id") or key),
        status="error",
        source=row_source if row_source in SNAPSHOT_SOURCES else "mixed",
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
        product={"barcode": {"raw": key if source == "barcode" else None}},
    )

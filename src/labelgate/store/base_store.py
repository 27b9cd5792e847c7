# src/labelgate/store/base_store.py — v1
"""Abstract persistent row store for the result and snapshot caches.

Row shapes are the storage wire contract:
    ocr_cache(image_hash PK, vision_raw, parsed_ingredients, analysis,
              confidence, created_at)
    snapshots(id PK, key, source, payload_json, analysis_json,
              created_at, updated_at, expires_at)

JSON columns are exchanged as Python objects, timestamps as UTC ISO-8601
strings with microsecond precision, so string order is time order.
Every operation raises StoreError on failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from labelgate.store.retry import StoreResponse

OCR_CACHE_COLUMNS: tuple[str, ...] = (
    "image_hash", "vision_raw", "parsed_ingredients", "analysis",
    "confidence", "created_at",
)
OCR_JSON_COLUMNS: frozenset[str] = frozenset({"vision_raw", "parsed_ingredients", "analysis"})

SNAPSHOT_COLUMNS: tuple[str, ...] = (
    "id", "key", "source", "payload_json", "analysis_json",
    "created_at", "updated_at", "expires_at",
)
SNAPSHOT_JSON_COLUMNS: frozenset[str] = frozenset({"payload_json", "analysis_json"})
SNAPSHOT_ORDER_COLUMNS: frozenset[str] = frozenset({"updated_at", "created_at"})


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as fixed-width UTC ISO-8601. Naive means UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp; None or unparseable yields None."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BaseRowStore(ABC):
    """Row-oriented store: point lookups, ordered queries, upserts, deletes."""

    @abstractmethod
    async def fetch_ocr_row(self, image_hash: str) -> StoreResponse[dict[str, Any]]:
        """Fetch one ocr_cache row. Missing row is data=None, not an error."""

    @abstractmethod
    async def upsert_ocr_row(
        self, row: dict[str, Any], created_at: str
    ) -> StoreResponse[None]:
        """Insert or update on image_hash. created_at is written on insert only."""

    @abstractmethod
    async def update_ocr_analysis(
        self, image_hash: str, analysis: dict[str, Any] | None
    ) -> StoreResponse[int]:
        """Set only the analysis column. Data is the affected row count."""

    @abstractmethod
    async def delete_ocr_rows_before(self, cutoff: str) -> StoreResponse[list[str]]:
        """Delete rows with created_at < cutoff. Data is the deleted hashes."""

    @abstractmethod
    async def fetch_latest_snapshot(
        self, key: str, source: str, order_by: str
    ) -> StoreResponse[dict[str, Any]]:
        """Most recent snapshots row for (key, source) by order_by desc."""

    @abstractmethod
    async def upsert_snapshot(
        self, row: dict[str, Any], update_columns: Sequence[str]
    ) -> StoreResponse[None]:
        """Insert on id, or overwrite only update_columns on conflict."""

    def close(self) -> None:
        """Release backend resources."""


def check_order_column(order_by: str) -> None:
    """Guard against ordering by anything but a known timestamp column."""
    if order_by not in SNAPSHOT_ORDER_COLUMNS:
        raise ValueError(f"Unsupported snapshot ordering column: {order_by!r}")


def check_snapshot_columns(columns: Sequence[str]) -> None:
    unknown = set(columns) - set(SNAPSHOT_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown snapshot columns: {sorted(unknown)}")

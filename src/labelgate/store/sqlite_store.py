# src/labelgate/store/sqlite_store.py — v1
"""SQLite-backed row store (CACHE_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. Upserts use
ON CONFLICT DO UPDATE with an explicit update set, so columns left out of
the set (created_at) keep their stored value.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from labelgate.store.base_store import (
    OCR_JSON_COLUMNS,
    SNAPSHOT_JSON_COLUMNS,
    BaseRowStore,
    check_order_column,
    check_snapshot_columns,
)
from labelgate.store.errors import StoreError, StoreErrorKind
from labelgate.store.retry import StoreResponse

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ocr_cache (
    image_hash TEXT PRIMARY KEY,
    vision_raw TEXT,
    parsed_ingredients TEXT NOT NULL,
    analysis TEXT,
    confidence REAL NOT NULL DEFAULT 0
        CHECK (confidence >= 0 AND confidence <= 1),
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ocr_cache_created_at_idx ON ocr_cache(created_at);

CREATE TABLE IF NOT EXISTS snapshots (
    id TEXT PRIMARY KEY,
    key TEXT NOT NULL,
    source TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    analysis_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    expires_at TEXT
);
CREATE INDEX IF NOT EXISTS snapshots_key_idx ON snapshots(key);
"""

# Created separately: tables from older deployments may lack updated_at.
_SNAPSHOT_ORDER_INDEX = (
    "CREATE INDEX IF NOT EXISTS snapshots_key_source_updated_at_idx "
    "ON snapshots(key, source, updated_at DESC)"
)


class SqliteRowStore(BaseRowStore):
    """Row store on a local SQLite database file."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        try:
            self._conn.execute(_SNAPSHOT_ORDER_INDEX)
        except sqlite3.OperationalError as e:
            logger.warning("Snapshot ordering index unavailable: %s", e)

    async def fetch_ocr_row(self, image_hash: str) -> StoreResponse[dict[str, Any]]:
        with _translate_errors():
            cursor = self._conn.execute(
                "SELECT * FROM ocr_cache WHERE image_hash = ?", (image_hash,)
            )
            row = cursor.fetchone()
        if row is None:
            return StoreResponse(data=None)
        return StoreResponse(data=_decode(row, OCR_JSON_COLUMNS))

    async def upsert_ocr_row(
        self, row: dict[str, Any], created_at: str
    ) -> StoreResponse[None]:
        with _translate_errors(), self._conn:
            self._conn.execute(
                """INSERT INTO ocr_cache
                   (image_hash, vision_raw, parsed_ingredients, analysis,
                    confidence, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(image_hash) DO UPDATE SET
                       vision_raw = excluded.vision_raw,
                       parsed_ingredients = excluded.parsed_ingredients,
                       analysis = excluded.analysis,
                       confidence = excluded.confidence""",
                (
                    row["image_hash"],
                    _encode(row.get("vision_raw")),
                    _encode(row["parsed_ingredients"]),
                    _encode(row.get("analysis")),
                    row["confidence"],
                    created_at,
                ),
            )
        return StoreResponse()

    async def update_ocr_analysis(
        self, image_hash: str, analysis: dict[str, Any] | None
    ) -> StoreResponse[int]:
        with _translate_errors(), self._conn:
            cursor = self._conn.execute(
                "UPDATE ocr_cache SET analysis = ? WHERE image_hash = ?",
                (_encode(analysis), image_hash),
            )
        return StoreResponse(data=cursor.rowcount)

    async def delete_ocr_rows_before(self, cutoff: str) -> StoreResponse[list[str]]:
        with _translate_errors(), self._conn:
            hashes = [
                r["image_hash"] for r in self._conn.execute(
                    "SELECT image_hash FROM ocr_cache WHERE created_at < ?", (cutoff,)
                )
            ]
            self._conn.execute("DELETE FROM ocr_cache WHERE created_at < ?", (cutoff,))
        return StoreResponse(data=hashes)

    async def fetch_latest_snapshot(
        self, key: str, source: str, order_by: str
    ) -> StoreResponse[dict[str, Any]]:
        check_order_column(order_by)
        with _translate_errors():
            cursor = self._conn.execute(
                f"SELECT * FROM snapshots WHERE key = ? AND source = ? "  # noqa: S608
                f"ORDER BY {order_by} DESC LIMIT 1",
                (key, source),
            )
            row = cursor.fetchone()
        if row is None:
            return StoreResponse(data=None)
        return StoreResponse(data=_decode(row, SNAPSHOT_JSON_COLUMNS))

    async def upsert_snapshot(
        self, row: dict[str, Any], update_columns: Sequence[str]
    ) -> StoreResponse[None]:
        columns = list(row)
        check_snapshot_columns(columns)
        check_snapshot_columns(update_columns)
        values = [
            _encode(row[c]) if c in SNAPSHOT_JSON_COLUMNS else row[c] for c in columns
        ]
        placeholders = ", ".join("?" for _ in columns)
        if update_columns:
            assignments = ", ".join(f"{c} = excluded.{c}" for c in update_columns)
            conflict = f"DO UPDATE SET {assignments}"
        else:
            conflict = "DO NOTHING"
        with _translate_errors(), self._conn:
            self._conn.execute(
                f"INSERT INTO snapshots ({', '.join(columns)}) "  # noqa: S608
                f"VALUES ({placeholders}) ON CONFLICT(id) {conflict}",
                values,
            )
        return StoreResponse()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Re-raise sqlite3 errors as StoreError."""
    try:
        yield
    except sqlite3.Error as e:
        message = str(e)
        if "locked" in message.lower() or "busy" in message.lower():
            raise StoreError(
                message, kind=StoreErrorKind.TRANSIENT, code=type(e).__name__
            ) from e
        raise StoreError.from_message(message, code=type(e).__name__) from e


def _encode(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _decode(row: sqlite3.Row, json_columns: frozenset[str]) -> dict[str, Any]:
    decoded: dict[str, Any] = {}
    for column in row.keys():
        value = row[column]
        if column in json_columns and value is not None:
            value = json.loads(value)
        decoded[column] = value
    return decoded

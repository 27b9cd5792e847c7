# src/labelgate/store/redis_store.py — v1
"""Redis-based row store (CACHE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for multi-instance deployments sharing one cache.

Layout:
    {prefix}ocr_cache:{image_hash}          hash, one field per column
    {prefix}ocr_cache:by_created_at         zset image_hash -> created_at epoch
    {prefix}snapshots:{id}                  hash, one field per column
    {prefix}snapshots:{order}:{source}:{key}  zset id -> order column epoch

created_at is written with HSETNX and indexed with ZADD NX, so repeated
upserts never move it. Each upsert is one MULTI/EXEC transaction. A snapshot
whose key or source changes is removed from its old index sets.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from labelgate.store.base_store import (
    OCR_JSON_COLUMNS,
    SNAPSHOT_JSON_COLUMNS,
    SNAPSHOT_ORDER_COLUMNS,
    BaseRowStore,
    check_order_column,
    check_snapshot_columns,
    parse_timestamp,
)
from labelgate.store.errors import StoreError, StoreErrorKind
from labelgate.store.retry import StoreResponse

logger = logging.getLogger(__name__)

_DEFAULT_PREFIX = "labelgate:"


class RedisRowStore(BaseRowStore):
    """Row store on Redis hashes with sorted-set indexes."""

    def __init__(self, redis_url: str, key_prefix: str = _DEFAULT_PREFIX) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._prefix = key_prefix
        self._redis_error: type[Exception] = redis.exceptions.RedisError
        self._transient_errors: tuple[type[Exception], ...] = (
            redis.exceptions.ConnectionError,
            redis.exceptions.TimeoutError,
        )

    # --- ocr_cache ---

    async def fetch_ocr_row(self, image_hash: str) -> StoreResponse[dict[str, Any]]:
        with self._translate_errors():
            fields = self._client.hgetall(self._ocr_key(image_hash))
        if not fields:
            return StoreResponse(data=None)
        row = _decode_fields(fields, OCR_JSON_COLUMNS)
        row["image_hash"] = image_hash
        row["confidence"] = float(row.get("confidence") or 0.0)
        return StoreResponse(data=row)

    async def upsert_ocr_row(
        self, row: dict[str, Any], created_at: str
    ) -> StoreResponse[None]:
        image_hash = row["image_hash"]
        key = self._ocr_key(image_hash)
        content = {
            "vision_raw": json.dumps(row.get("vision_raw")),
            "parsed_ingredients": json.dumps(row["parsed_ingredients"]),
            "analysis": json.dumps(row.get("analysis")),
            "confidence": str(row["confidence"]),
        }
        with self._translate_errors():
            pipe = self._client.pipeline(transaction=True)
            pipe.hset(key, mapping=content)
            pipe.hsetnx(key, "created_at", created_at)
            pipe.zadd(self._ocr_index(), {image_hash: _epoch(created_at)}, nx=True)
            pipe.execute()
        return StoreResponse()

    async def update_ocr_analysis(
        self, image_hash: str, analysis: dict[str, Any] | None
    ) -> StoreResponse[int]:
        key = self._ocr_key(image_hash)
        with self._translate_errors():
            if not self._client.exists(key):
                return StoreResponse(data=0)
            self._client.hset(key, "analysis", json.dumps(analysis))
        return StoreResponse(data=1)

    async def delete_ocr_rows_before(self, cutoff: str) -> StoreResponse[list[str]]:
        with self._translate_errors():
            hashes = list(
                self._client.zrangebyscore(self._ocr_index(), "-inf", f"({_epoch(cutoff)}")
            )
            for image_hash in hashes:
                self._client.delete(self._ocr_key(image_hash))
            if hashes:
                self._client.zrem(self._ocr_index(), *hashes)
        return StoreResponse(data=hashes)

    # --- snapshots ---

    async def fetch_latest_snapshot(
        self, key: str, source: str, order_by: str
    ) -> StoreResponse[dict[str, Any]]:
        check_order_column(order_by)
        with self._translate_errors():
            ids = self._client.zrevrange(self._snapshot_index(order_by, source, key), 0, 0)
            if not ids:
                return StoreResponse(data=None)
            fields = self._client.hgetall(self._snapshot_key(ids[0]))
        if not fields:
            return StoreResponse(data=None)
        row = _decode_fields(fields, SNAPSHOT_JSON_COLUMNS)
        row["id"] = ids[0]
        return StoreResponse(data=row)

    async def upsert_snapshot(
        self, row: dict[str, Any], update_columns: Sequence[str]
    ) -> StoreResponse[None]:
        check_snapshot_columns(list(row))
        check_snapshot_columns(update_columns)
        snapshot_id = row["id"]
        hash_key = self._snapshot_key(snapshot_id)
        with self._translate_errors():
            stored = self._client.hgetall(hash_key)
            columns = update_columns if stored else [c for c in row if c != "id"]
            mapping = {
                c: _encode_field(row.get(c), c in SNAPSHOT_JSON_COLUMNS)
                for c in columns
                if c != "id"
            }
            merged = {**stored, **mapping}

            pipe = self._client.pipeline(transaction=True)
            if mapping:
                pipe.hset(hash_key, mapping=mapping)
            moved = bool(stored) and (
                stored.get("key"), stored.get("source")
            ) != (merged["key"], merged["source"])
            for order in SNAPSHOT_ORDER_COLUMNS:
                if moved:
                    pipe.zrem(
                        self._snapshot_index(order, stored["source"], stored["key"]),
                        snapshot_id,
                    )
                value = merged.get(order)
                if value:
                    pipe.zadd(
                        self._snapshot_index(order, merged["source"], merged["key"]),
                        {snapshot_id: _epoch(value)},
                    )
            pipe.execute()
        return StoreResponse()

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()

    # --- helpers ---

    def _ocr_key(self, image_hash: str) -> str:
        return f"{self._prefix}ocr_cache:{image_hash}"

    def _ocr_index(self) -> str:
        return f"{self._prefix}ocr_cache:by_created_at"

    def _snapshot_key(self, snapshot_id: str) -> str:
        return f"{self._prefix}snapshots:{snapshot_id}"

    def _snapshot_index(self, order_by: str, source: str, key: str) -> str:
        return f"{self._prefix}snapshots:{order_by}:{source}:{key}"

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        """Re-raise redis errors as StoreError."""
        try:
            yield
        except self._transient_errors as e:
            raise StoreError(
                str(e), kind=StoreErrorKind.TRANSIENT, code=type(e).__name__
            ) from e
        except self._redis_error as e:
            raise StoreError.from_message(str(e), code=type(e).__name__) from e


def _epoch(timestamp: str) -> float:
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        raise StoreError(f"Invalid timestamp: {timestamp!r}")
    return parsed.timestamp()


def _encode_field(value: Any, is_json: bool) -> str:
    if is_json:
        return json.dumps(value)
    return "" if value is None else str(value)


def _decode_fields(fields: dict[str, str], json_columns: frozenset[str]) -> dict[str, Any]:
    decoded: dict[str, Any] = {}
    for column, raw in fields.items():
        if column in json_columns:
            decoded[column] = json.loads(raw) if raw else None
        else:
            decoded[column] = raw or None
    return decoded

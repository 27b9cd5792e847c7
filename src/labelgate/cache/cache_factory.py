# src/labelgate/cache/cache_factory.py — v1
"""Factory for row store instantiation."""

from __future__ import annotations

from labelgate.config.settings import Settings
from labelgate.store.base_store import BaseRowStore

DEFAULT_DB_PATH = "~/.labelgate/cache.db"


def create_row_store(settings: Settings | None = None) -> BaseRowStore:
    """Instantiate the configured store backend.

    Args:
        settings: Application settings. Defaults to SQLite backend.

    Returns:
        Configured BaseRowStore implementation.
    """
    backend = "sqlite" if settings is None else settings.cache_backend

    if backend == "sqlite":
        from labelgate.store.sqlite_store import SqliteRowStore
        db_path = DEFAULT_DB_PATH if settings is None else str(settings.cache_db_path)
        return SqliteRowStore(db_path=db_path)

    if backend == "redis":
        from labelgate.store.redis_store import RedisRowStore
        if settings is None or not settings.cache_redis_url:
            raise ValueError(
                "CACHE_REDIS_URL must be set when CACHE_BACKEND=redis"
            )
        return RedisRowStore(
            redis_url=settings.cache_redis_url,
            key_prefix=settings.cache_redis_prefix,
        )

    raise ValueError(f"Unsupported cache backend: {backend!r}")

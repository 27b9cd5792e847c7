# src/labelgate/logging/context.py — v1
"""Contextual logging support: attach image_hash, cache_key, operation to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per scan or cache operation.
_image_hash: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "image_hash", default=None
)
_cache_key: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "cache_key", default=None
)
_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    image_hash: str | None = None
    cache_key: str | None = None
    operation: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        image_hash=_image_hash.get(),
        cache_key=_cache_key.get(),
        operation=_operation.get(),
    )


def set_scan_context(image_hash: str, operation: str | None = None) -> None:
    """Set scan-level context (called once per label scan)."""
    _image_hash.set(image_hash)
    _operation.set(operation)


def set_cache_context(cache_key: str, operation: str | None = None) -> None:
    """Set cache-level context (called per snapshot cache operation)."""
    _cache_key.set(cache_key)
    _operation.set(operation)


def clear_context() -> None:
    """Reset all context variables."""
    _image_hash.set(None)
    _cache_key.set(None)
    _operation.set(None)

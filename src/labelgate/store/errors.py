# src/labelgate/store/errors.py — v1
"""Typed errors raised by persistent row stores.

Backends translate native driver errors into StoreError with a kind, so
callers branch on the kind rather than on message text.
"""

from __future__ import annotations

import re
from enum import Enum

RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})

_TRANSIENT_MARKERS = ("fetch failed", "network", "gateway", "timeout", "timed out")
_MISSING_COLUMN_RE = re.compile(
    r"column\b.*\b(does not exist|schema cache)|no such column",
    re.IGNORECASE,
)


class StoreErrorKind(str, Enum):
    """Failure classes a caller can act on."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    MISSING_COLUMN = "missing_column"


class StoreError(Exception):
    """A persistent store operation failed."""

    def __init__(
        self,
        message: str,
        kind: StoreErrorKind = StoreErrorKind.PERMANENT,
        status: int | None = None,
        code: str | None = None,
        trace_id: str | None = None,
    ) -> None:
        self.message = message
        self.kind = kind
        self.status = status
        self.code = code
        self.trace_id = trace_id
        super().__init__(message)

    @classmethod
    def from_message(
        cls, message: str, status: int | None = None, code: str | None = None
    ) -> StoreError:
        """Build an error, classifying it from its status and message."""
        return cls(
            message,
            kind=classify_store_message(message, status),
            status=status,
            code=code,
        )


def classify_store_message(message: str, status: int | None = None) -> StoreErrorKind:
    """Classify a raw driver message into a StoreErrorKind."""
    if _MISSING_COLUMN_RE.search(message):
        return StoreErrorKind.MISSING_COLUMN
    if status is not None and status in RETRYABLE_STATUS:
        return StoreErrorKind.TRANSIENT
    lowered = message.lower()
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return StoreErrorKind.TRANSIENT
    return StoreErrorKind.PERMANENT

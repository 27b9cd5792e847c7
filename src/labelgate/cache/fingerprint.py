# src/labelgate/cache/fingerprint.py — v1
"""Content fingerprinting for label images.

The fingerprint is the result cache key: resubmitting the same image bytes
hits the same cache row.
"""

from __future__ import annotations

import hashlib


def compute_image_hash(raw_bytes: bytes) -> str:
    """SHA-256 hex digest of the raw image bytes."""
    return hashlib.sha256(raw_bytes).hexdigest()


def short_hash(image_hash: str, length: int = 8) -> str:
    """Truncated hash for log lines."""
    return image_hash[:length]

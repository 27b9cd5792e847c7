# src/labelgate/tracking/models.py — v1
"""Tracking domain models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class MetricsSnapshot(BaseModel):
    """Point-in-time copy of the counters."""

    started_at: datetime
    last_flush_at: datetime
    totals: dict[str, int]
    window: dict[str, int]

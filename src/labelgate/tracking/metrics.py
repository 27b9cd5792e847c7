# src/labelgate/tracking/metrics.py — v1
"""Process counters for cache and store outcomes.

A MetricsRegistry is created by the application and handed to the layers
that record into it. Counters keep lifetime totals plus a rolling window
that flush() logs and resets.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from labelgate.tracking.models import MetricsSnapshot

logger = logging.getLogger(__name__)

METRIC_NAMES: tuple[str, ...] = (
    "ocr_cache_hit",
    "ocr_cache_miss",
    "ocr_cache_read_error",
    "ocr_cache_write_success",
    "ocr_cache_write_failed",
    "ocr_cache_cleanup_deleted",
    "snapshot_cache_hit",
    "snapshot_cache_miss",
    "snapshot_write_success",
    "snapshot_write_failed",
    "store_retry",
)

DEFAULT_FLUSH_INTERVAL_S = 60.0


def _empty_counts() -> dict[str, int]:
    return {name: 0 for name in METRIC_NAMES}


class MetricsRegistry:
    """Counters with a periodic window flush."""

    def __init__(self, flush_interval_s: float = DEFAULT_FLUSH_INTERVAL_S) -> None:
        self._flush_interval_s = flush_interval_s
        self._totals = _empty_counts()
        self._window = _empty_counts()
        self._started_at = datetime.now(timezone.utc)
        self._last_flush_at = self._started_at
        self._task: asyncio.Task[None] | None = None

    def increment(self, name: str, amount: int = 1) -> None:
        """Add to a counter.

        Raises:
            KeyError: If name is not a registered metric.
        """
        if name not in self._totals:
            raise KeyError(f"Unknown metric: {name!r}")
        self._totals[name] += amount
        self._window[name] += amount

    def snapshot(self) -> MetricsSnapshot:
        """Copy of totals and the current window."""
        return MetricsSnapshot(
            started_at=self._started_at,
            last_flush_at=self._last_flush_at,
            totals=dict(self._totals),
            window=dict(self._window),
        )

    def flush(self) -> dict[str, int]:
        """Log the window if it saw activity, then reset it.

        Returns:
            The window counts that were flushed.
        """
        window = self._window
        if any(window.values()):
            logger.info(
                "metrics window %s",
                " ".join(f"{name}={window[name]}" for name in METRIC_NAMES),
            )
        self._window = _empty_counts()
        self._last_flush_at = datetime.now(timezone.utc)
        return window

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic flush on the running loop. No-op if started."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._flush_loop())

    async def stop(self) -> None:
        """Cancel the flush task and flush the final window."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.flush()

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval_s)
            self.flush()

# src/labelgate/logging/handlers.py — v1
"""Size-rotated log file handler.

Sizes are given as strings such as "10MB"; retention is a backup count.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

_SIZE_RE = re.compile(r"^(\d+)\s*(B|KB|MB|GB)?$", re.IGNORECASE)
_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size(size: str) -> int:
    """Byte count for a size string. A bare number is bytes.

    Raises:
        ValueError: On anything other than <digits>[B|KB|MB|GB].
    """
    match = _SIZE_RE.match(size.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size!r}. Use e.g. '10MB'.")
    return int(match.group(1)) * _UNITS[(match.group(2) or "B").upper()]


def create_rotating_handler(
    log_file: Path | str,
    rotation: str = "10MB",
    retention: int = 30,
    formatter: logging.Formatter | None = None,
) -> RotatingFileHandler:
    """Rotating file handler; the parent directory is created if missing."""
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=max(retention, 0),
        encoding="utf-8",
    )
    if formatter is not None:
        handler.setFormatter(formatter)
    return handler

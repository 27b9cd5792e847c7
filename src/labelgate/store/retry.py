# src/labelgate/store/retry.py — v1
"""Bounded retry with exponential backoff for persistent store operations.

The executor only judges whether a failure is transient. It never looks
at the business meaning of a result, and it never raises: every outcome,
including exhaustion, is returned as a RetryOutcome.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, TypeVar

from labelgate.store.errors import RETRYABLE_STATUS, StoreError, StoreErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRACE_HEADER = "cf-ray"

_TRANSIENT_MARKERS = ("fetch failed", "network", "gateway", "timeout")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff shape."""

    retries: int = 5
    base_delay_s: float = 0.25
    max_delay_s: float = 4.0
    jitter_ratio: float = 0.2

    def __post_init__(self) -> None:
        if self.retries < 1:
            raise ValueError("retries must be >= 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("retry delays must be >= 0")


DEFAULT_RETRY_POLICY = RetryPolicy()


@dataclass
class StoreResponse(Generic[T]):
    """Result of a single store call: data, or an error and optional status."""

    data: T | None = None
    error: BaseException | None = None
    status: int | None = None


@dataclass
class RetryOutcome(Generic[T]):
    """Terminal result of a retried operation."""

    data: T | None
    error: BaseException | None
    status: int | None
    attempts: int
    trace_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retried(self) -> bool:
        return self.attempts > 1


@dataclass(frozen=True)
class ErrorMeta:
    """Loggable summary of a store error."""

    status: int | None
    code: str | None
    message: str | None
    trace_id: str | None


def extract_status(error: BaseException | None, fallback: int | None = None) -> int | None:
    """Explicit status first, then error.status / error.status_code."""
    if isinstance(fallback, int):
        return fallback
    if error is None:
        return None
    for attr in ("status", "status_code"):
        candidate = getattr(error, attr, None)
        if isinstance(candidate, int):
            return candidate
    return None


def extract_trace_id(error: BaseException | None) -> str | None:
    """Correlation id from the error, or from a cf-ray response header."""
    if error is None:
        return None
    explicit = getattr(error, "trace_id", None)
    if isinstance(explicit, str) and explicit:
        return explicit
    response = getattr(error, "response", None)
    if response is None:
        response = getattr(error.__cause__, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    value = headers.get(TRACE_HEADER) if hasattr(headers, "get") else None
    if value is None and isinstance(headers, Mapping):
        value = next(
            (v for k, v in headers.items() if str(k).lower() == TRACE_HEADER), None
        )
    return str(value) if value is not None else None


def extract_error_meta(
    error: BaseException | None,
    status: int | None = None,
    trace_id: str | None = None,
) -> ErrorMeta:
    """Summarize an error for log lines."""
    code = getattr(error, "code", None)
    message = getattr(error, "message", None) or (str(error) if error else None)
    return ErrorMeta(
        status=extract_status(error, status),
        code=str(code) if code else None,
        message=str(message) if message else None,
        trace_id=trace_id or extract_trace_id(error),
    )


def is_retryable_error(error: BaseException, status: int | None = None) -> bool:
    """True for 429/5xx statuses, network/gateway/timeout failures."""
    if isinstance(error, StoreError):
        if error.kind is StoreErrorKind.TRANSIENT:
            return True
        if error.kind is StoreErrorKind.MISSING_COLUMN:
            return False
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    resolved = extract_status(error, status)
    if resolved is not None and resolved in RETRYABLE_STATUS:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def compute_delay(attempt: int, policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> float:
    """Delay in seconds after a failed attempt (1-based), jitter included."""
    raw = min(policy.base_delay_s * (2 ** (attempt - 1)), policy.max_delay_s)
    return raw + raw * policy.jitter_ratio * random.random()  # noqa: S311


async def with_retry(
    operation: Callable[[], Awaitable[StoreResponse[T]]],
    policy: RetryPolicy | None = None,
    *,
    retries: int | None = None,
    base_delay_s: float | None = None,
    max_delay_s: float | None = None,
    on_retry: Callable[[int, BaseException], Any] | None = None,
    label: str = "store",
) -> RetryOutcome[T]:
    """Run a store operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory. May return a
            StoreResponse carrying an error, or raise.
        policy: Base policy. Defaults to 5 attempts, 250ms base, 4s cap.
        retries: Per-call override of the attempt budget.
        base_delay_s: Per-call override of the base delay.
        max_delay_s: Per-call override of the delay cap.
        on_retry: Called with (attempt, error) before each backoff sleep.
        label: Operation name for log lines.

    Returns:
        RetryOutcome. attempts tells apart success after N attempts,
        failure after N attempts and non-retryable failure on attempt 1.
    """
    policy = policy or DEFAULT_RETRY_POLICY
    overrides = {
        k: v for k, v in (
            ("retries", retries),
            ("base_delay_s", base_delay_s),
            ("max_delay_s", max_delay_s),
        ) if v is not None
    }
    if overrides:
        policy = replace(policy, **overrides)

    last_error: BaseException | None = None
    last_status: int | None = None
    last_trace: str | None = None

    for attempt in range(1, policy.retries + 1):
        data: T | None = None
        try:
            response = await operation()
        except Exception as e:
            error: BaseException | None = e
            status = extract_status(e)
        else:
            data = response.data
            error = response.error
            status = extract_status(error, response.status)

        trace_id = extract_trace_id(error)
        if error is None or not is_retryable_error(error, status):
            return RetryOutcome(
                data=data, error=error, status=status,
                attempts=attempt, trace_id=trace_id,
            )

        last_error, last_status, last_trace = error, status, trace_id
        if attempt < policy.retries:
            delay = compute_delay(attempt, policy)
            logger.warning(
                "%s failed (attempt %d/%d, status=%s), retrying in %.2fs: %s",
                label, attempt, policy.retries, status, delay, error,
            )
            if on_retry is not None:
                on_retry(attempt, error)
            await asyncio.sleep(delay)

    logger.warning(
        "%s failed after %d attempts (status=%s, trace_id=%s): %s",
        label, policy.retries, last_status, last_trace, last_error,
    )
    return RetryOutcome(
        data=None, error=last_error, status=last_status,
        attempts=policy.retries, trace_id=last_trace,
    )

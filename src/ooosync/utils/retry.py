"""Retry wrapper for Google API requests.

Intended use:
- Provide a single place for retries, backoff and the retryable status set.
- Wrap `request.execute()` calls from google-api-python-client.

Notes:
- Only the provider client retries. The reconciler above it never does; it is safe
  to rerun wholesale instead.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from time import sleep
from typing import Any

from googleapiclient.errors import HttpError

log = logging.getLogger(__name__)

__all__ = ["RetryConfig", "execute_with_retries", "http_status"]


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 5
    backoff_initial_sec: float = 1.0
    backoff_factor: float = 2.0
    jitter_frac: float = 0.2  # +/- 20%
    status_forcelist: tuple[int, ...] = (429, 500, 502, 503, 504)


def http_status(exc: BaseException) -> int | None:
    """Best-effort HTTP status from an HttpError-like exception."""
    code = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _should_retry(status_code: int | None, exc: Exception, retry: RetryConfig) -> bool:
    if isinstance(exc, HttpError):
        return status_code in retry.status_forcelist
    # Transport errors (socket timeouts, connection resets) are retryable
    return isinstance(exc, OSError)


def _sleep_backoff(attempt: int, retry: RetryConfig) -> None:
    # attempt starts at 1
    base = retry.backoff_initial_sec * (retry.backoff_factor ** (attempt - 1))
    jitter = base * retry.jitter_frac
    delay = base + random.uniform(-jitter, jitter)
    if delay > 0:
        sleep(delay)


def execute_with_retries(
    request: Any, retry: RetryConfig | None = None, *, http: Any = None
) -> Any:
    """Execute a googleapiclient request, retrying transient failures.

    `http` overrides the transport the request was built with (one per thread).

    The last exception is re-raised once retries are exhausted or when the
    failure is not retryable.
    """
    cfg = retry or RetryConfig()
    attempts = max(1, cfg.max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return request.execute(http=http)
        except Exception as exc:
            status = http_status(exc)
            if attempt >= attempts or not _should_retry(status, exc, cfg):
                raise
            log.warning("google-request-retry attempt=%d status=%s", attempt, status)
            _sleep_backoff(attempt, cfg)
    raise AssertionError("unreachable")  # pragma: no cover

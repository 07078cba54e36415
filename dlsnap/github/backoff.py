"""Wait-time policy between GitHub API attempts.

Three signals, first match wins:
  1. ``Retry-After`` (seconds or HTTP date)
  2. exhausted rate limit (``x-ratelimit-remaining: 0``) -> wait for ``x-ratelimit-reset``
  3. exponential backoff with jitter
Header-driven waits are capped at five minutes; exponential waits at four seconds.
"""
from __future__ import annotations

import random
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping

from ..utils import now_utc

MAX_HEADER_WAIT_SECONDS = 300.0
RATE_LIMIT_MARGIN_SECONDS = 0.5
BASE_DELAY_SECONDS = 0.35
MAX_JITTER_MS = 180
MAX_BACKOFF_SECONDS = 4.0


def retry_after_seconds(headers: Mapping[str, str] | None, now: datetime | None = None) -> float | None:
    raw = (headers or {}).get("retry-after")
    if not raw:
        return None
    raw = raw.strip()
    if raw.isdigit():
        return min(float(raw), MAX_HEADER_WAIT_SECONDS)
    try:
        retry_at = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if retry_at is None or retry_at.tzinfo is None:
        return None
    wait = (retry_at - (now or now_utc())).total_seconds()
    return min(wait, MAX_HEADER_WAIT_SECONDS) if wait > 0 else None


def rate_limit_reset_seconds(headers: Mapping[str, str] | None, now: datetime | None = None) -> float | None:
    headers = headers or {}
    remaining = headers.get("x-ratelimit-remaining")
    reset = headers.get("x-ratelimit-reset")
    if remaining != "0" or not reset:
        return None
    try:
        reset_epoch = int(reset)
    except ValueError:
        return None
    wait = reset_epoch - (now or now_utc()).timestamp() + RATE_LIMIT_MARGIN_SECONDS
    return min(wait, MAX_HEADER_WAIT_SECONDS) if wait > 0 else None


def exponential_backoff_seconds(attempt: int, rng: Callable[[], float] = random.random) -> float:
    # whole milliseconds
    jitter = int(rng() * MAX_JITTER_MS) / 1000
    return min(BASE_DELAY_SECONDS * 2 ** (attempt - 1) + jitter, MAX_BACKOFF_SECONDS)


def compute_backoff_seconds(
    attempt: int,
    headers: Mapping[str, str] | None = None,
    *,
    now: datetime | None = None,
    rng: Callable[[], float] = random.random,
) -> float:
    if headers is not None:
        wait = retry_after_seconds(headers, now)
        if wait is not None:
            return wait
        wait = rate_limit_reset_seconds(headers, now)
        if wait is not None:
            return wait
    return exponential_backoff_seconds(attempt, rng)

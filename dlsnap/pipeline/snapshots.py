from __future__ import annotations

import math

from ..errors import InvalidDateError, InvalidTotalError
from ..utils import DATE_RE, is_date_key, shift_date

SCHEMA_VERSION = "1"

# period name -> lookback in days
PERIODS = (("day", 1), ("week", 7), ("month", 30))


def _is_count(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


def _check_date(value) -> str:
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise InvalidDateError(f"Invalid snapshot date '{value}'. Expected YYYY-MM-DD.")
    if not is_date_key(value):
        raise InvalidDateError(f"Invalid snapshot date '{value}'.")
    return value


def _check_total(value) -> int:
    if not _is_count(value):
        raise InvalidTotalError(f"Invalid total '{value}'. Expected a non-negative number.")
    return math.floor(value)


def normalize_series(series) -> dict[str, int]:
    """Drop entries that are not (YYYY-MM-DD, non-negative number) and floor the rest.

    Input is whatever was found in a stored document, so anything goes.
    """
    if not isinstance(series, dict):
        return {}
    out: dict[str, int] = {}
    for key, value in series.items():
        if not is_date_key(key) or not _is_count(value):
            continue
        out[key] = math.floor(value)
    return dict(sorted(out.items()))


def merge_series(existing_series, today_date: str, today_total, window_days: int) -> dict[str, int]:
    total = _check_total(today_total)
    today = _check_date(today_date)
    if int(window_days) < 1:
        raise ValueError(f"Invalid window of {window_days} days. Expected at least 1.")
    keep_from = shift_date(today, -(int(window_days) - 1))

    merged = normalize_series(existing_series)
    merged[today] = total
    return {d: v for d, v in sorted(merged.items()) if keep_from <= d <= today}


def pick_baseline(entries: list[tuple[str, int]], cutoff: str) -> tuple[int, bool] | None:
    """Choose the (value, partial) baseline for a cutoff date.

    Priority: exact date, earliest entry after the cutoff, latest entry before it.
    """
    for d, v in entries:
        if d == cutoff:
            return v, False
    for d, v in entries:
        if d > cutoff:
            return v, True
    for d, v in reversed(entries):
        if d < cutoff:
            return v, True
    return None


def compute_range(total, series: dict[str, int], today_date: str, days: int) -> tuple[int, bool]:
    cutoff = shift_date(_check_date(today_date), -days)
    entries = sorted(series.items())
    baseline = pick_baseline(entries, cutoff)
    if baseline is None:
        return 0, True
    value, partial = baseline
    return max(0, math.floor(total) - math.floor(value)), partial


def compute_stats(total, series: dict[str, int], today_date: str) -> dict:
    stats = {"total": math.floor(total)}
    partial = {}
    for name, days in PERIODS:
        stats[name], partial[name] = compute_range(total, series, today_date, days)
    return {"stats": stats, "partial": partial}


def snapshot_meta(series: dict[str, int], window_days: int) -> dict:
    dates = sorted(series)
    return {
        "windowDays": window_days,
        "count": len(dates),
        "firstDate": dates[0] if dates else None,
        "lastDate": dates[-1] if dates else None,
        "series": series,
    }


def build_document(
    *,
    owner: str,
    repo: str,
    visibility: str,
    generated_at: str,
    total,
    today_date: str,
    window_days: int,
    series,
    hourly_enabled: bool,
) -> dict:
    """Assemble the published downloads document.

    Key order is part of the format: the stored JSON is compared and diffed
    as text by readers of the output branch.
    """
    clean = normalize_series(series)
    computed = compute_stats(total, clean, today_date)
    return {
        "schemaVersion": SCHEMA_VERSION,
        "owner": owner,
        "repo": repo,
        "visibility": visibility,
        "generatedAt": generated_at,
        "stats": computed["stats"],
        "partial": computed["partial"],
        "snapshots": snapshot_meta(clean, window_days),
        "profile": {
            "defaultMode": "hourly" if hourly_enabled else "daily",
            "hourlyEnabled": hourly_enabled,
        },
    }


import re
from datetime import date, datetime, timedelta, timezone
from dateutil import parser as date_parser

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def to_utc_iso(dt: datetime) -> str:
    # Millisecond precision with a Z suffix, e.g. 2026-02-18T06:00:00.000Z
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def to_utc_date(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).date().isoformat()

def is_date_key(value) -> bool:
    if not isinstance(value, str) or not DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True

def shift_date(date_str: str, days: int) -> str:
    return (date.fromisoformat(date_str) + timedelta(days=days)).isoformat()

def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

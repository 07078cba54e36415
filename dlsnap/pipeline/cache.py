from __future__ import annotations

import math
from datetime import datetime

from ..utils import parse_timestamp


def is_same_repository(document, owner: str, repo: str) -> bool:
    if not isinstance(document, dict):
        return False
    doc_owner, doc_repo = document.get("owner"), document.get("repo")
    if not isinstance(doc_owner, str) or not isinstance(doc_repo, str):
        return False
    return doc_owner.lower() == owner.lower() and doc_repo.lower() == repo.lower()


def get_fresh_cached_total(previous, owner: str, repo: str, now: datetime, min_refresh_minutes: int) -> int | None:
    """Return the previous document's total when it is recent enough to reuse.

    A document stamped in the future (clock skew) is never reused.
    """
    if min_refresh_minutes <= 0:
        return None
    if not is_same_repository(previous, owner, repo):
        return None

    generated_at = parse_timestamp(previous.get("generatedAt"))
    if generated_at is None:
        return None

    stats = previous.get("stats")
    total = stats.get("total") if isinstance(stats, dict) else None
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        return None
    if not math.isfinite(total) or total < 0 or total != math.floor(total):
        return None

    age_seconds = (now - generated_at).total_seconds()
    if age_seconds < 0 or age_seconds > min_refresh_minutes * 60:
        return None
    return int(total)

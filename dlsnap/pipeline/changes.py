from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field

import structlog

from .snapshots import normalize_series

log = structlog.get_logger()

_IGNORED = "<ignored>"


@dataclass
class PreviousDocument:
    """What survived parsing of a stored document.

    `document` is the raw JSON object (None when missing or unreadable);
    `series` is only populated when the document belongs to the target repo.
    """
    document: dict | None = None
    series: dict[str, int] = field(default_factory=dict)


def load_previous_document(content: str | None, owner: str, repo: str, path: str = "") -> PreviousDocument:
    if not content:
        return PreviousDocument()
    try:
        parsed = json.loads(content)
    except ValueError:
        log.warning("previous_document_discarded", path=path, reason="invalid_json")
        return PreviousDocument()
    if not isinstance(parsed, dict):
        log.warning("previous_document_discarded", path=path, reason="not_an_object")
        return PreviousDocument()

    doc_owner, doc_repo = parsed.get("owner"), parsed.get("repo")
    if (
        isinstance(doc_owner, str)
        and isinstance(doc_repo, str)
        and (doc_owner.lower() != owner.lower() or doc_repo.lower() != repo.lower())
    ):
        log.warning(
            "previous_document_discarded",
            path=path,
            reason="other_repository",
            found=f"{doc_owner}/{doc_repo}",
            expected=f"{owner}/{repo}",
        )
        return PreviousDocument(document=parsed)

    snapshots = parsed.get("snapshots")
    series = normalize_series(snapshots.get("series") if isinstance(snapshots, dict) else None)
    return PreviousDocument(document=parsed, series=series)


def _without_timestamp(document) -> dict | None:
    if not isinstance(document, dict):
        return None
    clone = copy.deepcopy(document)
    clone["generatedAt"] = _IGNORED
    return clone


def has_material_change(previous, nxt) -> bool:
    prev = _without_timestamp(previous)
    new = _without_timestamp(nxt)
    if prev is None or new is None:
        return True
    return prev != new


def has_text_change(previous: str | None, nxt: str | None) -> bool:
    return (previous if isinstance(previous, str) else "") != (nxt if isinstance(nxt, str) else "")

from __future__ import annotations

import re

_CONFLICT_MESSAGE_RE = re.compile(r"sha|conflict|update", re.IGNORECASE)


class InvalidDateError(ValueError):
    pass


class InvalidTotalError(ValueError):
    pass


class GitHubRequestError(RuntimeError):
    """A GitHub API call that failed for good (after any retries)."""

    def __init__(self, message: str, *, method: str = "", path: str = "", status: int | None = None):
        super().__init__(message)
        self.method = method
        self.path = path
        self.status = status


class WriteConflictError(GitHubRequestError):
    """The stored file moved past the sha a conditional write was based on."""


class PublishError(RuntimeError):
    pass


def is_conflict_status(status: int | None, message: str = "") -> bool:
    if status == 409:
        return True
    return status == 422 and bool(_CONFLICT_MESSAGE_RE.search(message or ""))


def is_write_conflict(exc: BaseException | None) -> bool:
    if isinstance(exc, WriteConflictError):
        return True
    if isinstance(exc, GitHubRequestError):
        return is_conflict_status(exc.status, str(exc))
    return False

from __future__ import annotations

import base64
import json
import math
import random
import time
from dataclasses import dataclass
from urllib.parse import quote

import httpx
import structlog

from ..errors import GitHubRequestError, WriteConflictError, is_conflict_status
from .backoff import compute_backoff_seconds, rate_limit_reset_seconds, retry_after_seconds

log = structlog.get_logger()

API_BASE = "https://api.github.com"
USER_AGENT = "dlsnap/0.3 (+release-download-snapshots)"
RETRYABLE_STATUSES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
MAX_ATTEMPTS = 5
RELEASES_PER_PAGE = 100
MAX_RELEASE_PAGES = 1000


@dataclass(frozen=True)
class RemoteFile:
    """A file as read from a branch, with the blob sha needed to overwrite it."""
    owner: str
    repo: str
    path: str
    branch: str
    content: str
    sha: str


def _seg(value: str) -> str:
    return quote(str(value), safe="")


def encode_path(path: str) -> str:
    return "/".join(_seg(part) for part in path.split("/") if part)


def _error_detail(text: str) -> str:
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    if isinstance(parsed, dict) and isinstance(parsed.get("message"), str):
        return parsed["message"]
    return text


def should_retry_response(response: httpx.Response) -> bool:
    if response.status_code in RETRYABLE_STATUSES:
        return True
    if retry_after_seconds(response.headers) is not None:
        return True
    return rate_limit_reset_seconds(response.headers) is not None


class GitHubClient:
    def __init__(
        self,
        token: str,
        *,
        base_url: str = API_BASE,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        sleep=time.sleep,
        rng=random.random,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        if not token:
            raise ValueError("Missing GITHUB_TOKEN.")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._rng = rng
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _backoff(self, attempt: int, headers=None) -> float:
        return compute_backoff_seconds(attempt, headers, rng=self._rng)

    def request(self, method: str, path: str, *, params=None, body=None, allow_not_found=False, conflict_is_final=False):
        """Send one API call, retrying transient failures.

        Returns decoded JSON, text, or None for 204 / tolerated 404.
        With ``conflict_is_final`` a version conflict raises WriteConflictError
        straight away instead of being retried.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._http.request(method, path, params=params, json=body)
            except httpx.TransportError as exc:
                if attempt >= self.max_attempts:
                    if isinstance(exc, httpx.TimeoutException):
                        msg = f"GitHub API {method} {path} timed out after {self.timeout}s."
                    else:
                        msg = f"GitHub API {method} {path} failed: {exc}."
                    raise GitHubRequestError(msg, method=method, path=path) from exc
                delay = self._backoff(attempt)
                log.warning(
                    "github_request_retry",
                    method=method,
                    path=path,
                    attempt=attempt,
                    error=type(exc).__name__,
                    delay_sec=round(delay, 3),
                )
                self._sleep(delay)
                continue

            status = response.status_code
            if status == 404 and allow_not_found:
                return None

            if response.is_error:
                detail = _error_detail(response.text)
                if conflict_is_final and is_conflict_status(status, detail):
                    raise WriteConflictError(
                        f"GitHub API {method} {path} conflicted ({status}): {detail or 'version mismatch'}.",
                        method=method,
                        path=path,
                        status=status,
                    )
                if should_retry_response(response) and attempt < self.max_attempts:
                    delay = self._backoff(attempt, response.headers)
                    log.warning(
                        "github_request_retry",
                        method=method,
                        path=path,
                        attempt=attempt,
                        status=status,
                        delay_sec=round(delay, 3),
                    )
                    self._sleep(delay)
                    continue
                raise GitHubRequestError(
                    f"GitHub API {method} {path} failed ({status}): {detail or 'unknown error'}.",
                    method=method,
                    path=path,
                    status=status,
                )

            if status == 204:
                return None
            if "application/json" in response.headers.get("content-type", ""):
                return response.json()
            return response.text

        raise GitHubRequestError(f"GitHub API {method} {path} failed after retries.", method=method, path=path)

    def get_repository(self, owner: str, repo: str) -> dict:
        return self.request("GET", f"/repos/{_seg(owner)}/{_seg(repo)}")

    def get_release_downloads_total(self, owner: str, repo: str) -> int:
        total = 0
        page = 1
        while True:
            releases = self.request(
                "GET",
                f"/repos/{_seg(owner)}/{_seg(repo)}/releases",
                params={"per_page": RELEASES_PER_PAGE, "page": page},
            )
            if not isinstance(releases, list):
                raise GitHubRequestError("Unexpected GitHub API response for releases list.")
            for release in releases:
                assets = release.get("assets") if isinstance(release, dict) else None
                for asset in assets if isinstance(assets, list) else []:
                    total += _download_count(asset)
            if len(releases) < RELEASES_PER_PAGE:
                break
            page += 1
            if page > MAX_RELEASE_PAGES:
                raise GitHubRequestError(f"Release pagination exceeded safety limit ({MAX_RELEASE_PAGES} pages).")
        log.debug("release_downloads_total", owner=owner, repo=repo, total=total, pages=page)
        return total

    def get_ref(self, owner: str, repo: str, branch: str, allow_not_found: bool = False) -> dict | None:
        return self.request(
            "GET",
            f"/repos/{_seg(owner)}/{_seg(repo)}/git/ref/heads/{_seg(branch)}",
            allow_not_found=allow_not_found,
        )

    def create_ref(self, owner: str, repo: str, branch: str, sha: str) -> dict:
        return self.request(
            "POST",
            f"/repos/{_seg(owner)}/{_seg(repo)}/git/refs",
            body={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    def ensure_branch(self, owner: str, repo: str, branch: str, default_branch: str) -> bool:
        """Create ``branch`` from the head of ``default_branch`` if missing. Returns True if created."""
        if self.get_ref(owner, repo, branch, allow_not_found=True):
            return False
        source = self.get_ref(owner, repo, default_branch) or {}
        sha = (source.get("object") or {}).get("sha") if isinstance(source, dict) else None
        if not sha:
            raise GitHubRequestError(
                f"Could not resolve SHA for default branch '{default_branch}' while creating '{branch}'."
            )
        self.create_ref(owner, repo, branch, sha)
        log.info("output_branch_created", owner=owner, repo=repo, branch=branch, source=default_branch)
        return True

    def get_file(self, owner: str, repo: str, path: str, branch: str) -> RemoteFile | None:
        data = self.request(
            "GET",
            f"/repos/{_seg(owner)}/{_seg(repo)}/contents/{encode_path(path)}",
            params={"ref": branch},
            allow_not_found=True,
        )
        if data is None:
            return None
        if isinstance(data, list):
            raise GitHubRequestError(f"Expected file at '{path}' on branch '{branch}', but a directory was found.")
        if not isinstance(data, dict) or data.get("type") != "file":
            kind = data.get("type") if isinstance(data, dict) else type(data).__name__
            raise GitHubRequestError(f"Expected file at '{path}' on branch '{branch}', got type '{kind}'.")
        raw = data.get("content")
        content = ""
        if isinstance(raw, str):
            content = base64.b64decode(raw.replace("\n", "")).decode("utf-8", errors="replace")
        return RemoteFile(owner=owner, repo=repo, path=path, branch=branch, content=content, sha=data.get("sha"))

    def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        branch: str,
        content: str,
        message: str,
        sha: str | None = None,
    ) -> dict:
        body = {
            "message": message,
            "branch": branch,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if sha:
            body["sha"] = sha
        return self.request(
            "PUT",
            f"/repos/{_seg(owner)}/{_seg(repo)}/contents/{encode_path(path)}",
            body=body,
            conflict_is_final=True,
        )


def _download_count(asset) -> int:
    if not isinstance(asset, dict):
        return 0
    count = asset.get("download_count")
    if isinstance(count, bool) or not isinstance(count, (int, float)):
        return 0
    if not math.isfinite(count) or count <= 0:
        return 0
    return int(count)

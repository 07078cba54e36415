from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from ..config import Settings, matrix_chart_path
from ..errors import GitHubRequestError, PublishError, is_write_conflict
from ..services.charts import build_chart_svg
from ..utils import to_utc_date, to_utc_iso
from .cache import get_fresh_cached_total
from .changes import has_material_change, has_text_change, load_previous_document
from .snapshots import build_document, merge_series

log = structlog.get_logger()

MAX_PUBLISH_ATTEMPTS = 4
MAX_CHART_ATTEMPTS = 4


@dataclass
class PublishResult:
    document: dict
    changed: bool
    total_source: str
    commit_message: str
    attempts: int = 1


@dataclass(frozen=True)
class ChartTarget:
    path: str
    chart_type: str
    chart_theme: str


@dataclass
class ChartResult:
    published_count: int = 0
    total_count: int = 0
    files: list[str] = field(default_factory=list)

    @property
    def published_any(self) -> bool:
        return self.published_count > 0


def commit_message_for(owner: str, repo: str, today: str) -> str:
    return f"chore(gh-dl): update downloads snapshot for {owner}/{repo} ({today})"


def serialize_document(document: dict) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def publish_document(client, settings: Settings, repo_meta: dict, now: datetime) -> PublishResult:
    """Read, merge and conditionally write the downloads document.

    Every attempt re-reads the stored file so a concurrent writer's snapshot
    is merged rather than overwritten. The release total is fetched at most
    once per run.
    """
    owner, repo = settings.owner, settings.repo
    branch, path = settings.output_branch, settings.output_path
    today = to_utc_date(now)
    generated_at = to_utc_iso(now)
    commit_message = commit_message_for(owner, repo, today)
    visibility = "private" if repo_meta.get("private") else "public"

    total = None
    total_source = "api"

    for attempt in range(1, MAX_PUBLISH_ATTEMPTS + 1):
        current = client.get_file(owner, repo, path, branch)
        previous = load_previous_document(current.content if current else None, owner, repo, path=path)

        if total is None:
            cached = get_fresh_cached_total(previous.document, owner, repo, now, settings.min_refresh_minutes)
            if cached is not None:
                total, total_source = cached, "cache"
            else:
                total, total_source = client.get_release_downloads_total(owner, repo), "api"
            log.info("downloads_total_resolved", owner=owner, repo=repo, total=total, source=total_source)

        series = merge_series(previous.series, today, total, settings.window_days)
        document = build_document(
            owner=owner,
            repo=repo,
            visibility=visibility,
            generated_at=generated_at,
            total=total,
            today_date=today,
            window_days=settings.window_days,
            series=series,
            hourly_enabled=settings.hourly_enabled,
        )

        if not has_material_change(previous.document, document):
            log.info("document_unchanged", branch=branch, path=path, attempt=attempt)
            return PublishResult(document, False, total_source, commit_message, attempt)

        try:
            client.put_file(
                owner,
                repo,
                path,
                branch,
                serialize_document(document),
                commit_message,
                current.sha if current else None,
            )
        except GitHubRequestError as exc:
            if attempt >= MAX_PUBLISH_ATTEMPTS or not is_write_conflict(exc):
                raise
            log.warning(
                "publish_conflict_retry",
                branch=branch,
                path=path,
                attempt=attempt,
                max_attempts=MAX_PUBLISH_ATTEMPTS,
            )
            continue

        log.info("document_published", branch=branch, path=path, attempt=attempt, total=total)
        return PublishResult(document, True, total_source, commit_message, attempt)

    raise PublishError(f"Failed to publish {branch}:{path} after {MAX_PUBLISH_ATTEMPTS} attempts.")


def build_chart_targets(settings: Settings) -> list[ChartTarget]:
    """Primary chart first, then every type x theme file, each path once."""
    types, themes = settings.chart_types, settings.chart_themes
    targets = [ChartTarget(settings.chart_output_path, types[0], themes[0])]
    for chart_type in types:
        for chart_theme in themes:
            targets.append(
                ChartTarget(matrix_chart_path(settings.charts_output_dir, chart_type, chart_theme), chart_type, chart_theme)
            )

    unique: list[ChartTarget] = []
    seen: set[str] = set()
    for target in targets:
        if target.path in seen:
            continue
        seen.add(target.path)
        unique.append(target)
    return unique


def publish_single_chart(client, settings: Settings, target: ChartTarget, svg: str, commit_message: str) -> bool:
    owner, repo, branch = settings.owner, settings.repo, settings.output_branch
    for attempt in range(1, MAX_CHART_ATTEMPTS + 1):
        current = client.get_file(owner, repo, target.path, branch)
        if not has_text_change(current.content if current else None, svg):
            return False
        try:
            client.put_file(
                owner,
                repo,
                target.path,
                branch,
                svg,
                f"{commit_message} [chart:{target.chart_type}/{target.chart_theme}]",
                current.sha if current else None,
            )
            return True
        except GitHubRequestError as exc:
            if attempt >= MAX_CHART_ATTEMPTS or not is_write_conflict(exc):
                raise
            log.warning(
                "chart_conflict_retry",
                branch=branch,
                path=target.path,
                attempt=attempt,
                max_attempts=MAX_CHART_ATTEMPTS,
            )
    raise PublishError(f"Failed to publish chart {branch}:{target.path} after retries.")


def publish_charts(client, settings: Settings, document: dict, commit_message: str) -> ChartResult:
    if not settings.publish_chart:
        return ChartResult()

    targets = build_chart_targets(settings)
    options = settings.chart_render_options()
    published = 0
    for target in targets:
        svg = build_chart_svg(
            owner=settings.owner,
            repo=settings.repo,
            series=document["snapshots"]["series"],
            generated_at=document["generatedAt"],
            chart_type=target.chart_type,
            chart_theme=target.chart_theme,
            **options,
        )
        if publish_single_chart(client, settings, target, svg, commit_message):
            published += 1
            log.info("chart_published", path=target.path, chart_type=target.chart_type, chart_theme=target.chart_theme)
        else:
            log.debug("chart_unchanged", path=target.path)

    return ChartResult(published_count=published, total_count=len(targets), files=[t.path for t in targets])

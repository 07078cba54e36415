import os
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

from ..config import Settings
from ..utils import now_utc
from .publish import ChartResult, PublishResult, publish_charts, publish_document

log = structlog.get_logger()


@dataclass
class RunResult:
    publish: PublishResult
    charts: ChartResult

    @property
    def document(self) -> dict:
        return self.publish.document


def _fmt(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def run_outputs(settings: Settings, result: RunResult) -> list[tuple[str, str]]:
    doc = result.document
    stats, partial = doc["stats"], doc["partial"]
    charts = result.charts
    pairs = [
        ("owner", settings.owner),
        ("repo", settings.repo),
        ("generated_at", doc["generatedAt"]),
        ("total", stats["total"]),
        ("day", stats["day"]),
        ("week", stats["week"]),
        ("month", stats["month"]),
        ("partial_day", partial["day"]),
        ("partial_week", partial["week"]),
        ("partial_month", partial["month"]),
        ("chart_output_path", settings.chart_output_path),
        ("chart_published", charts.published_any),
        ("chart_published_count", charts.published_count),
        ("chart_total_count", charts.total_count),
        ("chart_files", ",".join(charts.files)),
        ("output_branch", settings.output_branch),
        ("output_path", settings.output_path),
        ("total_source", result.publish.total_source),
        ("published", result.publish.changed),
    ]
    return [(name, _fmt(value)) for name, value in pairs]


def write_outputs(outputs: list[tuple[str, str]], output_file: str | None = None):
    output_file = output_file if output_file is not None else os.getenv("GITHUB_OUTPUT", "")
    if not output_file:
        for name, value in outputs:
            log.info("run_output", name=name, value=value)
        return
    with open(output_file, "a", encoding="utf-8") as fh:
        for name, value in outputs:
            fh.write(f"{name}={value}\n")


def summary_lines(settings: Settings, result: RunResult) -> list[str]:
    doc = result.document
    stats, partial = doc["stats"], doc["partial"]
    charts = result.charts
    chart_line = "- Chart: **disabled**"
    if settings.publish_chart:
        chart_line = (
            f"- Chart: **enabled** (`{settings.output_branch}:{settings.chart_output_path}`, "
            f"updated: {charts.published_count}/{charts.total_count})"
        )
    return [
        "## GitHub Downloads Snapshot",
        "",
        f"- Repository: `{settings.owner}/{settings.repo}`",
        f"- Output: `{settings.output_branch}:{settings.output_path}`",
        f"- Published: **{'yes' if result.publish.changed else 'no (no material change)'}**",
        chart_line,
        f"- Total source: **{result.publish.total_source}**",
        f"- Total: **{stats['total']}**",
        f"- Day: **{stats['day']}** (partial: {_fmt(partial['day'])})",
        f"- Week: **{stats['week']}** (partial: {_fmt(partial['week'])})",
        f"- Month: **{stats['month']}** (partial: {_fmt(partial['month'])})",
        f"- Snapshot count: **{doc['snapshots']['count']}**",
        f"- Generated at: `{doc['generatedAt']}`",
    ]


def append_summary(lines: list[str], summary_file: str | None = None):
    summary_file = summary_file if summary_file is not None else os.getenv("GITHUB_STEP_SUMMARY", "")
    if not summary_file:
        return
    path = Path(summary_file)
    with path.open("a", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")


def run_snapshot(
    settings: Settings,
    client,
    now: datetime | None = None,
    *,
    output_file: str | None = None,
    summary_file: str | None = None,
) -> RunResult:
    run_id = str(uuid.uuid4())
    now = now or now_utc()
    structlog.contextvars.bind_contextvars(run_id=run_id, repository=f"{settings.owner}/{settings.repo}")
    log.info("run_started", output=f"{settings.output_branch}:{settings.output_path}", charts=settings.publish_chart)

    def _step_start(step: str):
        log.info("run_step_start", step=step)
        return time.monotonic()

    def _step_done(step: str, started: float, **fields):
        log.info("run_step_done", step=step, elapsed_sec=round(time.monotonic() - started, 2), **fields)

    try:
        started = _step_start("repository_meta")
        repo_meta = client.get_repository(settings.owner, settings.repo) or {}
        default_branch = repo_meta.get("default_branch") or "main"
        created = client.ensure_branch(settings.owner, settings.repo, settings.output_branch, default_branch)
        _step_done("repository_meta", started, default_branch=default_branch, branch_created=bool(created))

        started = _step_start("publish_document")
        published = publish_document(client, settings, repo_meta, now)
        _step_done(
            "publish_document",
            started,
            changed=published.changed,
            attempts=published.attempts,
            total_source=published.total_source,
        )

        started = _step_start("publish_charts")
        charts = publish_charts(client, settings, published.document, published.commit_message)
        _step_done("publish_charts", started, published=charts.published_count, total=charts.total_count)

        result = RunResult(publish=published, charts=charts)
        write_outputs(run_outputs(settings, result), output_file)
        append_summary(summary_lines(settings, result), summary_file)

        stats = published.document["stats"]
        log.info(
            "run_finished",
            published=published.changed,
            total=stats["total"],
            day=stats["day"],
            week=stats["week"],
            month=stats["month"],
            source=published.total_source,
            charts_updated=charts.published_count,
            charts_total=charts.total_count,
        )
        return result
    except Exception as e:
        log.error("run_failed", err=str(e))
        raise
    finally:
        structlog.contextvars.unbind_contextvars("run_id", "repository")

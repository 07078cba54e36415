from __future__ import annotations

import io
from datetime import date

import matplotlib
matplotlib.use("Agg")  # non-interactive backend
import matplotlib.pyplot as plt
import matplotlib.ticker as mticker

import structlog

from ..config import CHART_THEMES, CHART_TYPES
from ..pipeline.snapshots import normalize_series, pick_baseline
from ..utils import shift_date

log = structlog.get_logger()

DPI = 100
MAX_AUTO_X_LABELS = 6

CHART_TYPE_META = {
    "total-trend": {"title_suffix": "total trend", "latest_label": "Latest total", "range_days": 0},
    "daily": {"title_suffix": "daily delta", "latest_label": "Latest day", "range_days": 1},
    "weekly": {"title_suffix": "weekly delta", "latest_label": "Latest week", "range_days": 7},
    "monthly": {"title_suffix": "monthly delta", "latest_label": "Latest month", "range_days": 30},
}

CHART_THEME_META = {
    "black": {
        "background": "#0b0b0d", "title": "#f8fafc", "subtitle": "#cbd5e1", "grid": "#1f2937",
        "axis": "#94a3b8", "line": "#22d3ee", "latest": "#f8fafc", "fill": "#22d3ee",
        "empty": "#cbd5e1", "value": "#cbd5e1",
    },
    "slate": {
        "background": "#0f172a", "title": "#e2e8f0", "subtitle": "#94a3b8", "grid": "#1e293b",
        "axis": "#94a3b8", "line": "#60a5fa", "latest": "#e2e8f0", "fill": "#60a5fa",
        "empty": "#cbd5e1", "value": "#cbd5e1",
    },
    "orange": {
        "background": "#fff7ed", "title": "#7c2d12", "subtitle": "#9a3412", "grid": "#fed7aa",
        "axis": "#c2410c", "line": "#ea580c", "latest": "#7c2d12", "fill": "#f97316",
        "empty": "#9a3412", "value": "#9a3412",
    },
}

# Fixed salt and text-as-text keep the SVG byte-stable for identical input.
_SVG_RC = {"svg.hashsalt": "dlsnap", "svg.fonttype": "none", "font.family": "DejaVu Sans"}


def _clamp(value, lo: int, hi: int, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return fallback
    return max(lo, min(hi, value))


def _px(size_px: float) -> float:
    # font sizes are given in pixels of the final image
    return round(size_px * 72 / DPI, 2)


def chart_points(series: dict[str, int], chart_type: str) -> list[tuple[str, int]]:
    """Values plotted per date: the running total, or its trailing 1/7/30-day delta."""
    entries = sorted(series.items())
    days = CHART_TYPE_META[chart_type]["range_days"]
    if days == 0:
        return entries
    points = []
    for index, (d, total) in enumerate(entries):
        baseline = pick_baseline(entries[: index + 1], shift_date(d, -days))
        base_value = baseline[0] if baseline else total
        points.append((d, max(0, total - base_value)))
    return points


def x_label_indices(dates: list[str], every_days: int) -> list[int]:
    if len(dates) <= 1:
        return [0]
    indices = [0]
    last = len(dates) - 1
    if every_days > 0:
        last_labelled = date.fromisoformat(dates[0])
        for index in range(1, last):
            current = date.fromisoformat(dates[index])
            if abs((current - last_labelled).days) >= every_days:
                indices.append(index)
                last_labelled = current
    else:
        step = max(1, (len(dates) - 1) // (MAX_AUTO_X_LABELS - 1))
        indices.extend(range(step, last, step))
    if last not in indices:
        indices.append(last)
    return indices


def format_date_label(value: str, fmt: str) -> str:
    yyyy, mm, dd = value.split("-")
    if fmt == "yy/mm/dd":
        return f"{yyyy[2:]}/{mm}/{dd}"
    if fmt == "dd/mm":
        return f"{dd}/{mm}"
    if fmt == "mm/dd":
        return f"{mm}/{dd}"
    if fmt == "none":
        return ""
    return value


def chart_title(owner: str, repo: str, chart_type: str, title_mode: str, title_text: str) -> str:
    if title_mode == "none":
        return ""
    if title_mode == "custom" and title_text:
        return title_text
    return f"{owner}/{repo} release downloads ({CHART_TYPE_META[chart_type]['title_suffix']})"


def _fig_to_svg(fig) -> str:
    buf = io.StringIO()
    fig.savefig(buf, format="svg", facecolor=fig.get_facecolor(), metadata={"Date": None})
    plt.close(fig)
    return buf.getvalue()


def _y_ticks(scale_min: float, scale_max: float, count: int) -> list[float]:
    span = scale_max - scale_min
    return [scale_min + span * i / count for i in range(count + 1)]


def build_chart_svg(
    *,
    owner: str,
    repo: str,
    series,
    generated_at: str,
    chart_type: str = "total-trend",
    chart_theme: str = "slate",
    width: int = 1000,
    height: int = 360,
    zero_baseline: bool = True,
    y_ticks: int = 6,
    x_label_every_days: int = 0,
    show_value_labels: bool = False,
    date_label_format: str = "yyyy-mm-dd",
    show_generated_at: bool = True,
    title_mode: str = "default",
    title_text: str = "",
) -> str:
    """Render one release-download chart as SVG text."""
    chart_type = chart_type if chart_type in CHART_TYPES else "total-trend"
    chart_theme = chart_theme if chart_theme in CHART_THEMES else "slate"
    theme = CHART_THEME_META[chart_theme]
    width = _clamp(width, 640, 4096, 1000)
    height = _clamp(height, 240, 2160, 360)
    y_ticks = _clamp(y_ticks, 2, 12, 6)
    x_label_every_days = _clamp(x_label_every_days, 0, 365, 0)

    left = max(56, round(width * 0.064)) / width
    right = 1 - max(24, round(width * 0.024)) / width
    top = 1 - max(48, round(height * 0.144)) / height
    bottom = max(52, round(height * 0.156)) / height
    title_px = max(18, round(height * 0.067))
    subtitle_px = max(11, round(height * 0.036))
    axis_px = max(10, round(height * 0.033))
    latest_px = max(12, round(height * 0.039))
    value_px = max(9, round(height * 0.03))

    title = chart_title(owner, repo, chart_type, title_mode, title_text)
    subtitle = f"Generated {generated_at}" if show_generated_at else ""
    points = chart_points(normalize_series(series), chart_type)

    with plt.rc_context(_SVG_RC):
        fig = plt.figure(figsize=(width / DPI, height / DPI), dpi=DPI)
        fig.patch.set_facecolor(theme["background"])
        title_y = 1 - (1 - top) * 0.35
        if title:
            fig.text(left, title_y, title, color=theme["title"], fontsize=_px(title_px), fontweight="bold", va="center")
        if subtitle:
            fig.text(left, 0.02, subtitle, color=theme["subtitle"], fontsize=_px(subtitle_px), va="bottom")

        if not points:
            fig.text(
                0.5, 0.5, "No snapshot data yet",
                color=theme["empty"], fontsize=_px(max(14, round(height * 0.044))),
                fontweight="semibold", ha="center", va="center",
            )
            return _fig_to_svg(fig)

        ax = fig.add_axes([left, bottom, right - left, top - bottom])
        ax.set_facecolor(theme["background"])
        for spine in ax.spines.values():
            spine.set_visible(False)

        dates = [d for d, _ in points]
        values = [v for _, v in points]
        xs = list(range(len(points)))
        scale_min = 0 if zero_baseline else min(values)
        scale_max = max(values)
        if scale_max <= scale_min:
            scale_max = scale_min + 1

        ax.set_ylim(scale_min, scale_max)
        if len(xs) == 1:
            ax.set_xlim(-0.5, 0.5)
        else:
            ax.set_xlim(0, len(xs) - 1)
        ticks = _y_ticks(scale_min, scale_max, y_ticks)
        ax.yaxis.set_major_locator(mticker.FixedLocator(ticks))
        ax.yaxis.set_major_formatter(mticker.FuncFormatter(lambda v, _pos: f"{round(v):,}"))
        ax.grid(True, axis="y", color=theme["grid"], linewidth=1)
        ax.set_axisbelow(True)
        ax.tick_params(axis="both", length=0, colors=theme["axis"], labelsize=_px(axis_px))

        label_idx = x_label_indices(dates, x_label_every_days) if date_label_format != "none" else []
        ax.xaxis.set_major_locator(mticker.FixedLocator(label_idx))
        tick_labels = ax.set_xticklabels([format_date_label(dates[i], date_label_format) for i in label_idx])
        if len(tick_labels) > 1:
            tick_labels[0].set_horizontalalignment("left")
            tick_labels[-1].set_horizontalalignment("right")

        ax.fill_between(xs, values, scale_min, color=theme["fill"], alpha=0.18, linewidth=0)
        ax.plot(xs, values, color=theme["line"], linewidth=3, solid_capstyle="round", solid_joinstyle="round")
        ax.scatter([xs[-1]], [values[-1]], color=theme["line"], s=30, zorder=5)

        if show_value_labels:
            for x, v in zip(xs, values):
                ax.annotate(
                    f"{v:,}", (x, v), textcoords="offset points", xytext=(0, 6),
                    ha="center", color=theme["value"], fontsize=_px(value_px), fontweight="semibold",
                )

        latest = f"{CHART_TYPE_META[chart_type]['latest_label']}: {values[-1]:,}"
        fig.text(right, title_y, latest, color=theme["latest"], fontsize=_px(latest_px), fontweight="bold", ha="right", va="center")

        log.debug("chart_rendered", chart_type=chart_type, chart_theme=chart_theme, points=len(points))
        return _fig_to_svg(fig)

import re
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

CHART_TYPES = ("total-trend", "daily", "weekly", "monthly")
CHART_THEMES = ("black", "slate", "orange")
CHART_DATE_LABEL_FORMATS = ("yyyy-mm-dd", "yy/mm/dd", "dd/mm", "mm/dd", "none")
CHART_TITLE_MODES = ("default", "custom", "none")

SLUG_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
BRANCH_BAD_CHARS_RE = re.compile(r"[\x00-\x1f\x7f ~^:?*\\\[\]]")


def validate_branch(value: str) -> str:
    if not value:
        raise ValueError("Input 'output_branch' cannot be empty.")
    segments = value.split("/")
    if (
        value in ("@", "HEAD")
        or value.startswith(("/", "-"))
        or value.endswith(("/", "."))
        or ".." in value
        or "//" in value
        or "@{" in value
        or BRANCH_BAD_CHARS_RE.search(value)
        or any(
            not seg or seg in (".", "..") or seg.startswith(".") or seg.endswith(".lock")
            for seg in segments
        )
    ):
        raise ValueError(f"Invalid 'output_branch' value '{value}'. It must be a valid git branch name.")
    return value


def validate_repo_path(value: str, name: str = "output_path") -> str:
    if not value:
        raise ValueError(f"Input '{name}' cannot be empty.")
    if value.startswith(("/", "\\")):
        raise ValueError(f"Invalid '{name}' value '{value}'. Use a repository-relative path.")
    normalized = value.replace("\\", "/")
    if any(part in ("", ".", "..") for part in normalized.split("/")):
        raise ValueError(
            f"Invalid '{name}' value '{value}'. Path traversal and empty segments are not allowed."
        )
    return normalized


def _parse_csv(value: str, name: str, allowed: tuple[str, ...]) -> str:
    entries = [e.strip().lower() for e in value.split(",") if e.strip()]
    if not entries:
        raise ValueError(f"Invalid '{name}' value '{value}'. Provide a comma-separated list.")
    unique: list[str] = []
    for entry in entries:
        if entry not in allowed:
            raise ValueError(f"Invalid '{name}' entry '{entry}'. Allowed values: {', '.join(allowed)}.")
        if entry not in unique:
            unique.append(entry)
    return ",".join(unique)


def matrix_chart_path(charts_output_dir: str, chart_type: str, chart_theme: str) -> str:
    return f"{charts_output_dir}/{chart_type}--{chart_theme}.svg"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, env_ignore_empty=True, populate_by_name=True)
    token: str = Field(default="", alias="INPUT_TOKEN")
    github_token: str = Field(default="", alias="GITHUB_TOKEN")
    github_repository: str = Field(default="", alias="GITHUB_REPOSITORY")
    owner: str = Field(default="", alias="INPUT_OWNER")
    repo: str = Field(default="", alias="INPUT_REPO")
    window_days: int = Field(default=45, ge=1, le=3650, alias="INPUT_WINDOW_DAYS")
    hourly_enabled: bool = Field(default=False, alias="INPUT_ENABLE_HOURLY_PROFILE")
    output_branch: str = Field(default="gh-pages", alias="INPUT_OUTPUT_BRANCH")
    output_path: str = Field(default="gh-dl/downloads.json", alias="INPUT_OUTPUT_PATH")
    min_refresh_minutes: int = Field(default=0, ge=0, le=10080, alias="INPUT_MIN_REFRESH_MINUTES")
    publish_chart: bool = Field(default=False, alias="INPUT_PUBLISH_CHART")
    chart_output_path: str = Field(default="gh-dl/downloads-trend.svg", alias="INPUT_CHART_OUTPUT_PATH")
    chart_types_csv: str = Field(default="total-trend", alias="INPUT_CHART_TYPES")
    chart_themes_csv: str = Field(default="slate", alias="INPUT_CHART_THEMES")
    charts_output_dir: str = Field(default="gh-dl/charts", alias="INPUT_CHARTS_OUTPUT_DIR")
    chart_width: int = Field(default=1000, ge=640, le=4096, alias="INPUT_CHART_WIDTH")
    chart_height: int = Field(default=360, ge=240, le=2160, alias="INPUT_CHART_HEIGHT")
    chart_zero_baseline: bool = Field(default=True, alias="INPUT_CHART_ZERO_BASELINE")
    chart_y_ticks: int = Field(default=6, ge=2, le=12, alias="INPUT_CHART_Y_TICKS")
    chart_x_label_every_days: int = Field(default=0, ge=0, le=365, alias="INPUT_CHART_X_LABEL_EVERY_DAYS")
    chart_show_value_labels: bool = Field(default=False, alias="INPUT_CHART_SHOW_VALUE_LABELS")
    chart_date_label_format: str = Field(default="yyyy-mm-dd", alias="INPUT_CHART_DATE_LABEL_FORMAT")
    chart_show_generated_at: bool = Field(default=True, alias="INPUT_CHART_SHOW_GENERATED_AT")
    chart_title_mode: str = Field(default="default", alias="INPUT_CHART_TITLE_MODE")
    chart_title_text: str = Field(default="", max_length=120, alias="INPUT_CHART_TITLE_TEXT")
    http_timeout_seconds: float = Field(default=15.0, gt=0, alias="HTTP_TIMEOUT_SECONDS")

    @field_validator(
        "token", "github_token", "github_repository", "owner", "repo",
        "output_branch", "output_path", "chart_output_path", "charts_output_dir",
        "chart_types_csv", "chart_themes_csv", "chart_date_label_format", "chart_title_mode",
        "chart_title_text",
        mode="before",
    )
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("output_branch")
    @classmethod
    def _branch(cls, v: str) -> str:
        return validate_branch(v)

    @field_validator("output_path", "chart_output_path", "charts_output_dir")
    @classmethod
    def _path(cls, v: str, info) -> str:
        return validate_repo_path(v, info.field_name)

    @field_validator("chart_types_csv")
    @classmethod
    def _types(cls, v: str) -> str:
        return _parse_csv(v, "chart_types", CHART_TYPES)

    @field_validator("chart_themes_csv")
    @classmethod
    def _themes(cls, v: str) -> str:
        return _parse_csv(v, "chart_themes", CHART_THEMES)

    @field_validator("chart_date_label_format", "chart_title_mode")
    @classmethod
    def _enum(cls, v: str, info) -> str:
        allowed = CHART_DATE_LABEL_FORMATS if info.field_name == "chart_date_label_format" else CHART_TITLE_MODES
        value = v.lower()
        if value not in allowed:
            raise ValueError(f"Invalid '{info.field_name}' value '{v}'. Allowed values: {', '.join(allowed)}.")
        return value

    @model_validator(mode="after")
    def _resolve(self):
        owner, repo = self.owner, self.repo
        if not owner or not repo:
            parts = self.github_repository.split("/")
            if len(parts) == 2:
                owner = owner or parts[0]
                repo = repo or parts[1]
        if not owner or not repo:
            raise ValueError(
                "Could not resolve target repository. Provide 'owner' and 'repo', or run in a repository context."
            )
        for name, value in (("owner", owner), ("repo", repo)):
            if not SLUG_RE.match(value):
                raise ValueError(f"Invalid '{name}' value '{value}'. Use letters, numbers, '.', '-' or '_'.")
        self.owner, self.repo = owner, repo

        if self.chart_title_mode == "custom" and not self.chart_title_text:
            raise ValueError(
                "Invalid chart configuration: 'chart_title_text' is required when 'chart_title_mode' is 'custom'."
            )
        if self.publish_chart:
            matrix = [
                matrix_chart_path(self.charts_output_dir, t, th)
                for t in self.chart_types
                for th in self.chart_themes
            ]
            if self.output_path == self.chart_output_path or self.output_path in matrix:
                raise ValueError(
                    f"Invalid chart configuration: 'output_path' ({self.output_path}) overlaps chart output files. "
                    "Use a dedicated JSON path and keep chart files under 'chart_output_path'/'charts_output_dir'."
                )
        return self

    @property
    def chart_types(self) -> list[str]:
        return self.chart_types_csv.split(",")

    @property
    def chart_themes(self) -> list[str]:
        return self.chart_themes_csv.split(",")

    @property
    def resolved_token(self) -> str:
        return self.token or self.github_token

    def chart_render_options(self) -> dict:
        return {
            "width": self.chart_width,
            "height": self.chart_height,
            "zero_baseline": self.chart_zero_baseline,
            "y_ticks": self.chart_y_ticks,
            "x_label_every_days": self.chart_x_label_every_days,
            "show_value_labels": self.chart_show_value_labels,
            "date_label_format": self.chart_date_label_format,
            "show_generated_at": self.chart_show_generated_at,
            "title_mode": self.chart_title_mode,
            "title_text": self.chart_title_text,
        }


def load_settings(**overrides) -> Settings:
    return Settings(**overrides)

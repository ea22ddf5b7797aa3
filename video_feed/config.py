from __future__ import annotations

from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".video-feed"
PLACEHOLDER_API_KEYS: frozenset[str] = frozenset({"YOUR_YOUTUBE_API_KEY"})
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("videos.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "scheduler_enabled",
    "telemetry_enabled",
)


class IngestionConfigError(ValueError):
    pass


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{VIDEO_FEED_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Options come from `VIDEO_FEED_*` variables; the handful of settings shared
    with older deployments (`PORT`, `FETCH_INTERVAL`, `SEARCH_QUERY`,
    `YOUTUBE_API_KEY`, `YOUTUBE_API_URL`) keep their un-prefixed names.
    """

    model_config = SettingsConfigDict(
        env_prefix="VIDEO_FEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the database, logs and scheduler lock.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("videos.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('videos.db'))}",
    )

    # HTTP server.
    host: str = Field(default="0.0.0.0", description="Interface the API server binds to.")
    port: int = Field(
        default=5000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("PORT", "VIDEO_FEED_PORT"),
        description="Port the API server listens on.",
    )
    display_timezone: str = Field(
        default="Asia/Kolkata",
        description="Timezone used for the human-readable timestamp on the status endpoint.",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by CORS (JSON list).",
    )

    # Ingestion.
    scheduler_enabled: bool = Field(
        default=True,
        validation_alias="VIDEO_FEED_ENABLE_SCHEDULER",
        description="Enable the background ingestion loop.",
    )
    fetch_interval_ms: int = Field(
        default=20_000,
        ge=1_000,
        validation_alias=AliasChoices("FETCH_INTERVAL", "VIDEO_FEED_FETCH_INTERVAL_MS"),
        description="Milliseconds between ingestion cycles (at least 1000).",
    )
    search_query: str = Field(
        default="cricket",
        validation_alias=AliasChoices("SEARCH_QUERY", "VIDEO_FEED_SEARCH_QUERY"),
        description="Query sent to the YouTube search endpoint every cycle.",
    )
    lookback_seconds: int = Field(
        default=3_600,
        ge=1,
        description="Each cycle requests videos published within this many seconds.",
    )

    # YouTube provider.
    youtube_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("YOUTUBE_API_KEY", "VIDEO_FEED_YOUTUBE_API_KEY"),
        description="YouTube Data API key. Ingestion is disabled when missing.",
    )
    youtube_api_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("YOUTUBE_API_URL", "VIDEO_FEED_YOUTUBE_API_URL"),
        description=(
            "YouTube search endpoint, e.g. https://www.googleapis.com/youtube/v3/search. "
            "Ingestion is disabled when missing."
        ),
    )
    youtube_http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for each YouTube search request.",
    )
    youtube_max_results: int = Field(
        default=50,
        ge=1,
        le=50,
        description="Maximum videos requested per cycle (capped by the YouTube API at 50).",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @property
    def fetch_interval_seconds(self) -> float:
        return self.fetch_interval_ms / 1000

    @field_validator("search_query", mode="before")
    @classmethod
    def _normalize_search_query(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("SEARCH_QUERY must be a non-empty string.")
        return value.strip()

    @field_validator("display_timezone", mode="before")
    @classmethod
    def _validate_timezone(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIDEO_FEED_DISPLAY_TIMEZONE must be a string.")
        normalized = value.strip()
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {normalized}") from exc
        return normalized

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIDEO_FEED_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("VIDEO_FEED_TELEMETRY_SINK must be set to: none, log.")

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("youtube_api_key", "youtube_api_url", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def ingestion_config_error(settings: AppSettings) -> IngestionConfigError | None:
    """Describe why ingestion cannot run, or None when credentials look usable."""
    errors: list[str] = []
    if settings.youtube_api_key is None:
        errors.append("YOUTUBE_API_KEY is not set.")
    elif settings.youtube_api_key in PLACEHOLDER_API_KEYS:
        errors.append("YOUTUBE_API_KEY still holds the placeholder value.")
    if settings.youtube_api_url is None:
        errors.append("YOUTUBE_API_URL is not set.")

    if not errors:
        return None
    bullets = "\n".join(f"- {message}" for message in errors)
    return IngestionConfigError(f"YouTube ingestion is disabled:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, cast

import pytest
from fastapi.testclient import TestClient

from video_feed.config import AppSettings, ingestion_config_error, load_settings
from video_feed.dependencies import reset_cached_dependencies
from video_feed.logging_config import (
    TELEMETRY_LOG_FILE_NAME,
    _stream_supports_color,  # pyright: ignore[reportPrivateUsage]
    configure_application_logging,
)
from video_feed.main import create_app
from video_feed.scripts.export_openapi import main as export_openapi
from video_feed.scripts.fetch_once import main as fetch_once
from video_feed.scripts.serve import main as serve
from video_feed.services.ingestion_scheduler import IngestionCycleSummary


def test_load_settings_defaults(data_dir: Path) -> None:
    settings = load_settings()

    assert settings.data_dir == data_dir.resolve()
    assert settings.db_path == (data_dir / "videos.db").resolve()
    assert settings.log_dir == (data_dir / "logs").resolve()
    assert settings.port == 5000
    assert settings.fetch_interval_ms == 20_000
    assert settings.fetch_interval_seconds == 20.0
    assert settings.search_query == "cricket"
    assert settings.lookback_seconds == 3600
    assert settings.youtube_api_key is None
    assert settings.youtube_api_url is None
    assert settings.scheduler_enabled is False


def test_load_settings_reads_unprefixed_environment(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _ = data_dir
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("FETCH_INTERVAL", "5000")
    monkeypatch.setenv("SEARCH_QUERY", "  ipl final  ")
    monkeypatch.setenv("YOUTUBE_API_KEY", " test-key ")
    monkeypatch.setenv("YOUTUBE_API_URL", "https://www.googleapis.com/youtube/v3/search")

    settings = load_settings()

    assert settings.port == 8080
    assert settings.fetch_interval_seconds == 5.0
    assert settings.search_query == "ipl final"
    assert settings.youtube_api_key == "test-key"
    assert settings.youtube_api_url == "https://www.googleapis.com/youtube/v3/search"


def test_load_settings_parses_bool_and_paths(
    tmp_path: Path, data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _ = data_dir
    monkeypatch.setenv("VIDEO_FEED_ENABLE_SCHEDULER", "on")
    monkeypatch.setenv("VIDEO_FEED_TELEMETRY_ENABLED", "false")
    monkeypatch.setenv("VIDEO_FEED_DB_PATH", str(tmp_path / "elsewhere" / "feed.db"))
    monkeypatch.setenv("VIDEO_FEED_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("VIDEO_FEED_YOUTUBE_MAX_RESULTS", "25")

    settings = load_settings()

    assert settings.scheduler_enabled is True
    assert settings.telemetry_enabled is False
    assert settings.db_path == (tmp_path / "elsewhere" / "feed.db").resolve()
    assert settings.log_level == "DEBUG"
    assert settings.youtube_max_results == 25

    monkeypatch.setenv("VIDEO_FEED_ENABLE_SCHEDULER", "not-a-bool")
    assert load_settings().scheduler_enabled is True


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("SEARCH_QUERY", "   "),
        ("FETCH_INTERVAL", "0"),
        ("FETCH_INTERVAL", "999"),
        ("VIDEO_FEED_YOUTUBE_MAX_RESULTS", "51"),
        ("VIDEO_FEED_DISPLAY_TIMEZONE", "Mars/Olympus"),
        ("VIDEO_FEED_TELEMETRY_SINK", "kafka"),
    ],
)
def test_load_settings_rejects_invalid_values(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    _ = data_dir
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        load_settings()


def test_ingestion_config_error_requires_usable_credentials(data_dir: Path) -> None:
    _ = data_dir
    missing = ingestion_config_error(load_settings())
    assert missing is not None
    assert "YOUTUBE_API_KEY is not set." in str(missing)
    assert "YOUTUBE_API_URL is not set." in str(missing)

    placeholder = ingestion_config_error(
        AppSettings(
            youtube_api_key="YOUR_YOUTUBE_API_KEY",
            youtube_api_url="https://www.googleapis.com/youtube/v3/search",
        )
    )
    assert placeholder is not None
    assert "placeholder" in str(placeholder)

    usable = AppSettings(
        youtube_api_key="real-key",
        youtube_api_url="https://www.googleapis.com/youtube/v3/search",
    )
    assert ingestion_config_error(usable) is None


class _FakeScheduler:
    started = 0
    stopped = 0

    def start(self) -> None:
        _FakeScheduler.started += 1

    def stop(self) -> None:
        _FakeScheduler.stopped += 1


def test_lifespan_starts_and_stops_scheduler_when_configured(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _ = data_dir
    monkeypatch.setenv("VIDEO_FEED_ENABLE_SCHEDULER", "1")
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-key")
    monkeypatch.setenv("YOUTUBE_API_URL", "https://youtube.test/youtube/v3/search")
    monkeypatch.setattr(_FakeScheduler, "started", 0)
    monkeypatch.setattr(_FakeScheduler, "stopped", 0)
    built: list[AppSettings] = []

    def _build(settings: AppSettings) -> Any:
        built.append(settings)
        return _FakeScheduler()

    monkeypatch.setattr("video_feed.main.build_ingestion_scheduler", _build)
    reset_cached_dependencies()
    try:
        with TestClient(create_app()) as client:
            assert client.get("/health").status_code == 200
            assert _FakeScheduler.started == 1
    finally:
        reset_cached_dependencies()

    assert _FakeScheduler.stopped == 1
    assert built[0].search_query == "cricket"


def test_lifespan_serves_without_credentials(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _ = data_dir
    monkeypatch.setenv("VIDEO_FEED_ENABLE_SCHEDULER", "1")
    built: list[AppSettings] = []

    def _build(settings: AppSettings) -> Any:
        built.append(settings)
        return _FakeScheduler()

    monkeypatch.setattr("video_feed.main.build_ingestion_scheduler", _build)
    reset_cached_dependencies()
    try:
        with TestClient(create_app()) as client:
            response = client.get("/api/videos")
    finally:
        reset_cached_dependencies()

    assert response.status_code == 200
    assert built == []


def test_configure_application_logging_creates_file(tmp_path: Path) -> None:
    settings = AppSettings(
        data_dir=tmp_path,
        db_path=tmp_path / "videos.db",
        log_dir=tmp_path / "logs",
        log_level="INFO",
    )

    log_file = configure_application_logging(settings)
    logging.getLogger("video_feed.test").info("runtime-log-test %s", "ok")

    app_logger = logging.getLogger("video_feed")
    assert app_logger.propagate is False
    assert len(app_logger.handlers) == 2
    assert {handler.level for handler in app_logger.handlers} == {logging.INFO, logging.DEBUG}
    assert len(logging.getLogger("uvicorn.error").handlers) == 2
    assert logging.getLogger("uvicorn.access").handlers == []
    for handler in app_logger.handlers:
        handler.flush()

    parsed_events = [
        json.loads(line)
        for line in log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    runtime_event = next(
        event for event in parsed_events if event.get("event") == "runtime-log-test ok"
    )
    assert runtime_event["logger"] == "video_feed.test"
    assert runtime_event["level"] == "info"
    assert runtime_event["lineno"]
    assert runtime_event["timestamp"]
    assert (settings.log_dir / TELEMETRY_LOG_FILE_NAME).exists()


def test_stream_supports_color_detects_tty() -> None:
    class _TTY:
        def isatty(self) -> bool:
            return True

    class _Closed:
        def isatty(self) -> bool:
            raise ValueError("I/O operation on closed file")

    assert _stream_supports_color(_TTY()) is True
    assert _stream_supports_color(_Closed()) is False
    assert _stream_supports_color(object()) is False


def test_export_openapi_writes_schema(tmp_path: Path) -> None:
    output = tmp_path / "openapi" / "openapi.json"

    export_openapi(["--output", str(output)])

    schema = cast(dict[str, Any], json.loads(output.read_text(encoding="utf-8")))
    assert schema["info"]["title"] == "Video Feed API"
    assert {"/", "/api/videos", "/api/videos/search", "/api/videos/stats"} <= set(
        schema["paths"]
    )


def test_fetch_once_reports_missing_credentials(
    data_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _ = data_dir
    reset_cached_dependencies()
    try:
        exit_code = fetch_once([])
    finally:
        reset_cached_dependencies()

    assert exit_code == 2
    assert "YOUTUBE_API_KEY is not set." in capsys.readouterr().err


def test_fetch_once_runs_single_cycle(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _ = data_dir
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-key")
    monkeypatch.setenv("YOUTUBE_API_URL", "https://youtube.test/youtube/v3/search")
    queries: list[str] = []

    class _OneShotScheduler:
        def __init__(self, settings: AppSettings) -> None:
            queries.append(settings.search_query)

        def run_cycle(self) -> IngestionCycleSummary:
            return IngestionCycleSummary(cycle_id="c1", outcome="ok", fetched=4, inserted=3, updated=1)

    monkeypatch.setattr("video_feed.scripts.fetch_once.build_ingestion_scheduler", _OneShotScheduler)
    reset_cached_dependencies()
    try:
        exit_code = fetch_once(["--query", " ipl "])
    finally:
        reset_cached_dependencies()

    assert exit_code == 0
    assert queries == ["ipl"]
    assert "outcome=ok fetched=4 inserted=3 updated=1 failed=0" in capsys.readouterr().out


def test_serve_disables_uvicorn_access_log(
    data_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _ = data_dir
    monkeypatch.setenv("PORT", "8123")
    calls: list[tuple[str, dict[str, Any]]] = []

    def _fake_run(app: str, **kwargs: Any) -> None:
        calls.append((app, kwargs))

    monkeypatch.setattr("video_feed.scripts.serve.uvicorn.run", _fake_run)

    serve()

    assert calls == [
        (
            "video_feed.main:app",
            {"host": "0.0.0.0", "port": 8123, "log_config": None, "access_log": False},
        )
    ]

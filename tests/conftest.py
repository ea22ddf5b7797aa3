from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from video_feed.dependencies import reset_cached_dependencies
from video_feed.main import create_app
from video_feed.repositories.database import Database
from video_feed.repositories.video_repository import (
    VideoRepository,
    VideoThumbnail,
    VideoUpsert,
)

BASE_PUBLISHED_AT = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

VideoFactory = Callable[..., VideoUpsert]


def _make_video(
    video_id: str,
    *,
    title: str | None = None,
    description: str = "",
    published_at: datetime | None = None,
    minutes_ago: int = 0,
    channel_title: str = "Test Channel",
) -> VideoUpsert:
    return VideoUpsert(
        video_id=video_id,
        title=title if title is not None else f"Video {video_id}",
        description=description,
        published_at=(
            published_at
            if published_at is not None
            else BASE_PUBLISHED_AT - timedelta(minutes=minutes_ago)
        ),
        thumbnail=VideoThumbnail(
            url=f"https://i.ytimg.com/vi/{video_id}/default.jpg",
            width=120,
            height=90,
        ),
        channel_id="UC_test_channel",
        channel_title=channel_title,
    )


@pytest.fixture
def make_video() -> VideoFactory:
    return _make_video


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "videos.db")
    db.initialize()
    return db


@pytest.fixture
def repository(database: Database) -> VideoRepository:
    return VideoRepository(database)


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    runtime_dir = tmp_path / "runtime-data"
    runtime_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("VIDEO_FEED_DATA_DIR", str(runtime_dir))
    monkeypatch.setenv("VIDEO_FEED_ENABLE_SCHEDULER", "0")
    monkeypatch.setenv("VIDEO_FEED_TELEMETRY_SINK", "none")
    for name in ("YOUTUBE_API_KEY", "YOUTUBE_API_URL", "SEARCH_QUERY", "FETCH_INTERVAL", "PORT"):
        monkeypatch.delenv(name, raising=False)
    return runtime_dir


@pytest.fixture
def seeded_repository(data_dir: Path) -> VideoRepository:
    db = Database(data_dir / "videos.db")
    db.initialize()
    return VideoRepository(db)


@pytest.fixture
def client(data_dir: Path) -> Iterator[TestClient]:
    _ = data_dir
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()

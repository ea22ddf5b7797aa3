from __future__ import annotations

from functools import lru_cache

from video_feed.config import AppSettings, load_settings
from video_feed.repositories.database import Database
from video_feed.repositories.video_repository import VideoRepository
from video_feed.services.ingestion_scheduler import IngestionScheduler
from video_feed.services.video_query_service import VideoQueryService
from video_feed.services.youtube_search_client import YouTubeSearchClient
from video_feed.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_video_repository() -> VideoRepository:
    return VideoRepository(get_database())


@lru_cache(maxsize=1)
def get_query_service() -> VideoQueryService:
    return VideoQueryService(get_video_repository())


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def build_youtube_search_client(settings: AppSettings) -> YouTubeSearchClient:
    return YouTubeSearchClient(
        settings.youtube_api_key,
        settings.youtube_api_url,
        timeout_seconds=settings.youtube_http_timeout_seconds,
        max_results=settings.youtube_max_results,
    )


def build_ingestion_scheduler(settings: AppSettings) -> IngestionScheduler:
    return IngestionScheduler(
        build_youtube_search_client(settings),
        get_video_repository(),
        search_query=settings.search_query,
        poll_interval_seconds=settings.fetch_interval_seconds,
        lookback_seconds=settings.lookback_seconds,
        telemetry=get_telemetry(),
        lock_path=settings.data_dir / "ingestion.lock",
    )


def reset_cached_dependencies() -> None:
    get_query_service.cache_clear()
    get_video_repository.cache_clear()
    get_database.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()

from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from video_feed.repositories.video_repository import VideoRecord, VideoStats, VideoSummary
from video_feed.services.video_query_service import PaginatedVideos, VideoSearchResult

DataT = TypeVar("DataT")


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class ThumbnailPayload(_CamelModel):
    url: str
    width: int
    height: int


class VideoPayload(_CamelModel):
    id: int
    video_id: str
    title: str
    description: str
    published_at: datetime
    thumbnail: ThumbnailPayload
    channel_id: str
    channel_title: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: VideoRecord) -> VideoPayload:
        return cls(
            id=record.record_id,
            video_id=record.video_id,
            title=record.title,
            description=record.description,
            published_at=record.published_at,
            thumbnail=ThumbnailPayload(
                url=record.thumbnail.url,
                width=record.thumbnail.width,
                height=record.thumbnail.height,
            ),
            channel_id=record.channel_id,
            channel_title=record.channel_title,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class PaginationPayload(_CamelModel):
    current_page: int
    total_pages: int
    total_videos: int
    has_next_page: bool
    has_previous_page: bool
    limit: int


class VideoListData(_CamelModel):
    videos: list[VideoPayload]
    pagination: PaginationPayload

    @classmethod
    def from_results(cls, results: PaginatedVideos) -> VideoListData:
        return cls(
            videos=[VideoPayload.from_record(record) for record in results.videos],
            pagination=_pagination_payload(results),
        )


class VideoSearchData(_CamelModel):
    videos: list[VideoPayload]
    search_query: str
    pagination: PaginationPayload

    @classmethod
    def from_search(cls, search: VideoSearchResult) -> VideoSearchData:
        return cls(
            videos=[VideoPayload.from_record(record) for record in search.results.videos],
            search_query=search.query,
            pagination=_pagination_payload(search.results),
        )


class VideoSummaryPayload(_CamelModel):
    title: str
    published_at: datetime


class VideoStatsData(_CamelModel):
    total_videos: int
    latest_video: VideoSummaryPayload | None
    oldest_video: VideoSummaryPayload | None

    @classmethod
    def from_stats(cls, stats: VideoStats) -> VideoStatsData:
        return cls(
            total_videos=stats.total_count,
            latest_video=_summary_payload(stats.latest),
            oldest_video=_summary_payload(stats.oldest),
        )


class VideoDetailData(_CamelModel):
    video: VideoPayload


class ApiResponse(_CamelModel, Generic[DataT]):
    success: bool = True
    data: DataT


class ErrorResponse(_CamelModel):
    success: bool = False
    message: str


class ServiceStatusResponse(_CamelModel):
    success: bool = True
    message: str
    timestamp: str
    endpoints: dict[str, str]


def _pagination_payload(results: PaginatedVideos) -> PaginationPayload:
    return PaginationPayload(
        current_page=results.pagination.page,
        total_pages=results.total_pages,
        total_videos=results.total_count,
        has_next_page=results.has_next_page,
        has_previous_page=results.has_previous_page,
        limit=results.pagination.limit,
    )


def _summary_payload(summary: VideoSummary | None) -> VideoSummaryPayload | None:
    if summary is None:
        return None
    return VideoSummaryPayload(title=summary.title, published_at=summary.published_at)

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from video_feed.config import AppSettings
from video_feed.dependencies import get_query_service, get_settings
from video_feed.models.video_contracts import (
    ApiResponse,
    ErrorResponse,
    ServiceStatusResponse,
    VideoDetailData,
    VideoListData,
    VideoPayload,
    VideoSearchData,
    VideoStatsData,
)
from video_feed.services.video_query_service import VideoQueryService

router = APIRouter()

VIDEO_ENDPOINTS: dict[str, str] = {
    "videos": "/api/videos",
    "search": "/api/videos/search",
    "stats": "/api/videos/stats",
}
_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

PageParam = Annotated[str | None, Query(description="Page number, starting at 1.")]
LimitParam = Annotated[str | None, Query(description="Videos per page, 1 to 100.")]


@router.get(
    "/",
    response_model=ServiceStatusResponse,
    tags=["system"],
    operation_id="service_status",
)
def service_status(
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> ServiceStatusResponse:
    now = datetime.now(ZoneInfo(settings.display_timezone))
    return ServiceStatusResponse(
        message="YouTube Video API is running",
        timestamp=now.isoformat(timespec="seconds"),
        endpoints=dict(VIDEO_ENDPOINTS),
    )


@router.get(
    "/api/videos",
    response_model=ApiResponse[VideoListData],
    responses=_ERROR_RESPONSES,
    tags=["videos"],
    operation_id="list_videos",
)
def list_videos(
    query_service: Annotated[VideoQueryService, Depends(get_query_service)],
    page: PageParam = None,
    limit: LimitParam = None,
) -> ApiResponse[VideoListData]:
    results = query_service.list_videos(page=page, limit=limit)
    return ApiResponse[VideoListData](data=VideoListData.from_results(results))


@router.get(
    "/api/videos/search",
    response_model=ApiResponse[VideoSearchData],
    responses=_ERROR_RESPONSES,
    tags=["videos"],
    operation_id="search_videos",
)
def search_videos(
    query_service: Annotated[VideoQueryService, Depends(get_query_service)],
    q: Annotated[str | None, Query(description="Whitespace-separated search terms.")] = None,
    page: PageParam = None,
    limit: LimitParam = None,
) -> ApiResponse[VideoSearchData]:
    context_tokens = bind_contextvars(search_query=q)
    try:
        search = query_service.search_videos(query=q, page=page, limit=limit)
    finally:
        reset_contextvars(**context_tokens)
    return ApiResponse[VideoSearchData](data=VideoSearchData.from_search(search))


@router.get(
    "/api/videos/stats",
    response_model=ApiResponse[VideoStatsData],
    responses={500: {"model": ErrorResponse}},
    tags=["videos"],
    operation_id="video_stats",
)
def video_stats(
    query_service: Annotated[VideoQueryService, Depends(get_query_service)],
) -> ApiResponse[VideoStatsData]:
    stats = query_service.get_stats()
    return ApiResponse[VideoStatsData](data=VideoStatsData.from_stats(stats))


@router.get(
    "/api/videos/{video_id}",
    response_model=ApiResponse[VideoDetailData],
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["videos"],
    operation_id="get_video",
)
def get_video(
    video_id: str,
    query_service: Annotated[VideoQueryService, Depends(get_query_service)],
) -> ApiResponse[VideoDetailData]:
    record = query_service.get_video(video_id)
    return ApiResponse[VideoDetailData](
        data=VideoDetailData(video=VideoPayload.from_record(record))
    )

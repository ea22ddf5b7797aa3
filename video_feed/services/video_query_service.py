from __future__ import annotations

import logging
import math
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from video_feed.repositories.video_repository import (
    VideoPage,
    VideoRecord,
    VideoRepository,
    VideoStats,
)

LOGGER = logging.getLogger("video_feed.query")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
# Offsets are bound as signed 64-bit SQLite integers.
MAX_OFFSET = 2**63 - 1
INVALID_PAGINATION_MESSAGE = (
    "Invalid pagination parameters. Page must be >= 1, limit must be between 1 and 100"
)
MISSING_SEARCH_QUERY_MESSAGE = "Search query is required"

_T = TypeVar("_T")


class VideoQueryError(Exception):
    pass


class VideoQueryValidationError(VideoQueryError):
    pass


class VideoNotFoundError(VideoQueryError):
    pass


class VideoStorageError(VideoQueryError):
    pass


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class PaginatedVideos:
    videos: list[VideoRecord]
    total_count: int
    pagination: Pagination

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.pagination.limit)

    @property
    def has_next_page(self) -> bool:
        return self.pagination.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.pagination.page > 1


@dataclass(frozen=True)
class VideoSearchResult:
    query: str
    terms: tuple[str, ...]
    results: PaginatedVideos


def parse_pagination(page: str | int | None, limit: str | int | None) -> Pagination:
    parsed_page = _parse_int_param(page, default=DEFAULT_PAGE)
    parsed_limit = _parse_int_param(limit, default=DEFAULT_LIMIT)
    if parsed_page < 1 or parsed_limit < 1 or parsed_limit > MAX_LIMIT:
        raise VideoQueryValidationError(INVALID_PAGINATION_MESSAGE)
    if (parsed_page - 1) * parsed_limit > MAX_OFFSET:
        raise VideoQueryValidationError(INVALID_PAGINATION_MESSAGE)
    return Pagination(page=parsed_page, limit=parsed_limit)


def split_search_terms(query: str | None) -> tuple[str, ...]:
    if query is None:
        return ()
    return tuple(query.split())


class VideoQueryService:
    """Read side of the video corpus: listing, search and aggregate stats.

    Offset pages follow the store's `(published_at DESC, id ASC)` order. Videos
    ingested between two requests may shift later pages; that is the accepted
    cost of page/limit addressing.
    """

    def __init__(self, repository: VideoRepository) -> None:
        self._repository = repository

    def list_videos(self, *, page: str | int | None, limit: str | int | None) -> PaginatedVideos:
        pagination = parse_pagination(page, limit)
        video_page = self._read(
            "list",
            lambda: self._repository.list_by_published_desc(
                offset=pagination.offset,
                limit=pagination.limit,
            ),
        )
        return _paginated(video_page, pagination)

    def search_videos(
        self,
        *,
        query: str | None,
        page: str | int | None,
        limit: str | int | None,
    ) -> VideoSearchResult:
        terms = split_search_terms(query)
        if not terms or query is None:
            raise VideoQueryValidationError(MISSING_SEARCH_QUERY_MESSAGE)
        pagination = parse_pagination(page, limit)
        video_page = self._read(
            "search",
            lambda: self._repository.search(
                terms,
                offset=pagination.offset,
                limit=pagination.limit,
            ),
        )
        return VideoSearchResult(
            query=query,
            terms=terms,
            results=_paginated(video_page, pagination),
        )

    def get_stats(self) -> VideoStats:
        return self._read("stats", self._repository.stats)

    def get_video(self, video_id: str) -> VideoRecord:
        record = self._read("get", lambda: self._repository.get_by_video_id(video_id))
        if record is None:
            raise VideoNotFoundError(f"Video not found: {video_id}")
        return record

    def _read(self, operation: str, read: Callable[[], _T]) -> _T:
        try:
            return read()
        except sqlite3.Error as exc:
            LOGGER.error("video store read failed operation=%s", operation, exc_info=True)
            raise VideoStorageError(f"video store {operation} failed") from exc


def _paginated(video_page: VideoPage, pagination: Pagination) -> PaginatedVideos:
    return PaginatedVideos(
        videos=video_page.videos,
        total_count=video_page.total_count,
        pagination=pagination,
    )


def _parse_int_param(raw_value: str | int | None, *, default: int) -> int:
    if raw_value is None:
        return default
    if isinstance(raw_value, bool):
        raise VideoQueryValidationError(INVALID_PAGINATION_MESSAGE)
    if isinstance(raw_value, int):
        return raw_value
    normalized = raw_value.strip()
    if not normalized:
        return default
    try:
        return int(normalized)
    except ValueError as exc:
        raise VideoQueryValidationError(INVALID_PAGINATION_MESSAGE) from exc

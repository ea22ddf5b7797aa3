from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from video_feed.repositories.common import (
    parse_storage_timestamp,
    to_storage_timestamp,
    utc_now,
)
from video_feed.repositories.database import Database

_VIDEO_COLUMNS = """
    id,
    video_id,
    title,
    description,
    published_at,
    thumbnail_url,
    thumbnail_width,
    thumbnail_height,
    channel_id,
    channel_title,
    created_at,
    updated_at
"""

# Newest first; the row id breaks ties so offset pages stay stable.
_PAGE_ORDER = "ORDER BY published_at DESC, id ASC"

# Folded terms are bound as one JSON array.
_ANY_TERM_MATCH = """
    EXISTS (
        SELECT 1
        FROM json_each(?) AS term
        WHERE instr(casefold(title), term.value) > 0
           OR instr(casefold(description), term.value) > 0
    )
"""


@dataclass(frozen=True)
class VideoThumbnail:
    url: str = ""
    width: int = 0
    height: int = 0


@dataclass(frozen=True)
class VideoUpsert:
    video_id: str
    title: str
    description: str
    published_at: datetime
    thumbnail: VideoThumbnail
    channel_id: str
    channel_title: str


@dataclass(frozen=True)
class VideoRecord:
    record_id: int
    video_id: str
    title: str
    description: str
    published_at: datetime
    thumbnail: VideoThumbnail
    channel_id: str
    channel_title: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class VideoPage:
    videos: list[VideoRecord]
    total_count: int


@dataclass(frozen=True)
class VideoSummary:
    title: str
    published_at: datetime


@dataclass(frozen=True)
class VideoStats:
    total_count: int
    latest: VideoSummary | None
    oldest: VideoSummary | None


class VideoRepository:
    """Keyed store of ingested videos.

    `video_id` is the sole deduplication key. Writes go through `upsert`, which is
    safe when several writers race on the same key: the losing insert turns into
    an update inside the same transaction instead of surfacing a constraint error.
    """

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._db = db
        self._clock = clock

    def upsert(self, video: VideoUpsert) -> bool:
        """Insert or refresh a video; returns True when a new row was created."""
        now_iso = to_storage_timestamp(self._clock())
        values = (
            video.title,
            video.description,
            to_storage_timestamp(video.published_at),
            video.thumbnail.url,
            video.thumbnail.width,
            video.thumbnail.height,
            video.channel_id,
            video.channel_title,
        )
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO videos
                (
                    title,
                    description,
                    published_at,
                    thumbnail_url,
                    thumbnail_width,
                    thumbnail_height,
                    channel_id,
                    channel_title,
                    video_id,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(video_id) DO NOTHING
                """,
                (*values, video.video_id, now_iso, now_iso),
            )
            if cursor.rowcount == 1:
                return True

            conn.execute(
                """
                UPDATE videos SET
                    title = ?,
                    description = ?,
                    published_at = ?,
                    thumbnail_url = ?,
                    thumbnail_width = ?,
                    thumbnail_height = ?,
                    channel_id = ?,
                    channel_title = ?,
                    updated_at = ?
                WHERE video_id = ?
                """,
                (*values, now_iso, video.video_id),
            )
        return False

    def get_by_video_id(self, video_id: str) -> VideoRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_VIDEO_COLUMNS} FROM videos WHERE video_id = ?",
                (video_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    def list_by_published_desc(self, *, offset: int, limit: int) -> VideoPage:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_VIDEO_COLUMNS}
                FROM videos
                {_PAGE_ORDER}
                LIMIT ? OFFSET ?
                """,
                (max(1, limit), max(0, offset)),
            ).fetchall()
            count_row = conn.execute("SELECT COUNT(*) AS total FROM videos").fetchone()

        return VideoPage(
            videos=[_row_to_record(row) for row in rows],
            total_count=int(count_row["total"]),
        )

    def search(self, terms: Sequence[str], *, offset: int, limit: int) -> VideoPage:
        """Page through videos whose title or description contains any of `terms`.

        Matching is a literal, case-insensitive substring test per term; a video
        matches when at least one term appears in at least one of the two fields.
        """
        folded_terms = _fold_terms(terms)
        if not folded_terms:
            return VideoPage(videos=[], total_count=0)

        terms_json = json.dumps(folded_terms)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_VIDEO_COLUMNS}
                FROM videos
                WHERE {_ANY_TERM_MATCH}
                {_PAGE_ORDER}
                LIMIT ? OFFSET ?
                """,
                (terms_json, max(1, limit), max(0, offset)),
            ).fetchall()
            count_row = conn.execute(
                f"SELECT COUNT(*) AS total FROM videos WHERE {_ANY_TERM_MATCH}",
                (terms_json,),
            ).fetchone()

        return VideoPage(
            videos=[_row_to_record(row) for row in rows],
            total_count=int(count_row["total"]),
        )

    def stats(self) -> VideoStats:
        with self._db.connection() as conn:
            count_row = conn.execute("SELECT COUNT(*) AS total FROM videos").fetchone()
            latest_row = conn.execute(
                """
                SELECT title, published_at
                FROM videos
                ORDER BY published_at DESC, id ASC
                LIMIT 1
                """
            ).fetchone()
            oldest_row = conn.execute(
                """
                SELECT title, published_at
                FROM videos
                ORDER BY published_at ASC, id ASC
                LIMIT 1
                """
            ).fetchone()

        return VideoStats(
            total_count=int(count_row["total"]),
            latest=_row_to_summary(latest_row),
            oldest=_row_to_summary(oldest_row),
        )


def _fold_terms(terms: Sequence[str]) -> list[str]:
    folded = (term.strip().casefold() for term in terms)
    return list(dict.fromkeys(term for term in folded if term))


def _row_to_record(row: sqlite3.Row) -> VideoRecord:
    return VideoRecord(
        record_id=int(row["id"]),
        video_id=str(row["video_id"]),
        title=str(row["title"]),
        description=str(row["description"]),
        published_at=parse_storage_timestamp(row["published_at"]),
        thumbnail=VideoThumbnail(
            url=str(row["thumbnail_url"]),
            width=int(row["thumbnail_width"]),
            height=int(row["thumbnail_height"]),
        ),
        channel_id=str(row["channel_id"]),
        channel_title=str(row["channel_title"]),
        created_at=parse_storage_timestamp(row["created_at"]),
        updated_at=parse_storage_timestamp(row["updated_at"]),
    )


def _row_to_summary(row: sqlite3.Row | None) -> VideoSummary | None:
    if row is None:
        return None
    return VideoSummary(
        title=str(row["title"]),
        published_at=parse_storage_timestamp(row["published_at"]),
    )

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from html import unescape
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from video_feed.repositories.common import utc_now
from video_feed.repositories.video_repository import VideoThumbnail, VideoUpsert

LOGGER = logging.getLogger("video_feed.youtube")

YOUTUBE_SEARCH_MAX_RESULTS = 50
_QUOTA_ERROR_REASONS: frozenset[str] = frozenset(
    {
        "quotaExceeded",
        "rateLimitExceeded",
        "userRateLimitExceeded",
        "dailyLimitExceeded",
    }
)
_INVALID_KEY_REASONS: frozenset[str] = frozenset({"keyInvalid", "keyExpired", "badRequest"})


class SourceClientError(Exception):
    pass


class SourceAuthError(SourceClientError):
    pass


class SourceUpstreamError(SourceClientError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload: dict[str, Any] = dict(payload or {})


class SourceNetworkError(SourceClientError):
    pass


class VideoNormalizationError(ValueError):
    pass


class YouTubeSearchClient:
    """Pulls the newest videos for a query from the YouTube Data API `search` endpoint.

    Each `fetch_recent` call is exactly one outbound request; nothing is cached
    between calls.
    """

    def __init__(
        self,
        api_key: str | None,
        api_url: str | None,
        *,
        timeout_seconds: float = 10.0,
        max_results: int = YOUTUBE_SEARCH_MAX_RESULTS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._api_key = api_key.strip() if isinstance(api_key, str) else ""
        self._api_url = api_url.strip() if isinstance(api_url, str) else ""
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._max_results = min(YOUTUBE_SEARCH_MAX_RESULTS, max(1, max_results))
        self._clock = clock

    @property
    def max_results(self) -> int:
        return self._max_results

    def fetch_recent(self, query: str, since: datetime) -> list[dict[str, Any]]:
        normalized_query = query.strip()
        if not normalized_query:
            raise ValueError("search query must not be blank")
        if since.tzinfo is None:
            since = since.replace(tzinfo=UTC)
        if since >= self._clock():
            raise ValueError("since must be a point in the past")
        if not self._api_key or not self._api_url:
            raise SourceAuthError("YouTube API key or URL is not configured.")

        params = {
            "part": "snippet",
            "q": normalized_query,
            "type": "video",
            "order": "date",
            "publishedAfter": format_rfc3339(since),
            "maxResults": str(self._max_results),
            "key": self._api_key,
        }
        status_code, payload = _fetch_youtube_json(
            url=self._api_url,
            params=params,
            timeout_seconds=self._timeout_seconds,
        )
        if status_code >= 400 or status_code == 0:
            raise _classify_error_response(status_code, payload)

        raw_items = payload.get("items")
        if not isinstance(raw_items, list):
            raise SourceUpstreamError(
                "YouTube search response did not contain an items list.",
                status_code=status_code,
                payload=payload,
            )

        items: list[dict[str, Any]] = []
        for raw_item in cast(list[object], raw_items):
            if isinstance(raw_item, dict):
                items.append(cast(dict[str, Any], raw_item))
        LOGGER.debug(
            "youtube search returned items=%s query=%s since=%s",
            len(items),
            normalized_query,
            params["publishedAfter"],
        )
        return items[: self._max_results]


def normalize_search_item(raw_item: Mapping[str, Any]) -> VideoUpsert:
    """Map one `search#result` item to a complete write-shape.

    Optional metadata falls back to zero values so the stored row is never partial.
    """
    raw_id = raw_item.get("id")
    video_id = _text(raw_id.get("videoId")) if isinstance(raw_id, dict) else ""
    if not video_id:
        raise VideoNormalizationError("search item has no id.videoId")

    raw_snippet = raw_item.get("snippet")
    snippet: dict[str, Any] = (
        cast(dict[str, Any], raw_snippet) if isinstance(raw_snippet, dict) else {}
    )
    published_at = _parse_published_at(snippet.get("publishedAt"))
    if published_at is None:
        raise VideoNormalizationError(f"search item {video_id} has no valid snippet.publishedAt")

    return VideoUpsert(
        video_id=video_id,
        title=unescape(_text(snippet.get("title"))),
        description=unescape(_text(snippet.get("description"))),
        published_at=published_at,
        thumbnail=_default_thumbnail(snippet.get("thumbnails")),
        channel_id=_text(snippet.get("channelId")),
        channel_title=unescape(_text(snippet.get("channelTitle"))),
    )


def format_rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _fetch_youtube_json(
    *,
    url: str,
    params: dict[str, str],
    timeout_seconds: float,
) -> tuple[int, dict[str, Any]]:
    request = Request(
        f"{url}?{urlencode(params)}",
        headers={
            "accept": "application/json",
            "user-agent": "video-feed/1.0",
        },
        method="GET",
    )

    status_code = 0
    raw_body = ""
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        status_code = int(exc.code)
        raw_body = exc.read().decode("utf-8", errors="replace")
    except (URLError, TimeoutError, OSError) as exc:
        raise SourceNetworkError(f"YouTube request failed: {exc}") from exc

    return status_code, _parse_json_dict(raw_body)


def _classify_error_response(status_code: int, payload: dict[str, Any]) -> SourceClientError:
    error_body = payload.get("error")
    error: dict[str, Any] = cast(dict[str, Any], error_body) if isinstance(error_body, dict) else {}
    message = _text(error.get("message")) or f"YouTube search failed (status {status_code})."
    reasons = _error_reasons(error)

    if status_code == 401:
        return SourceAuthError(message)
    if status_code == 400 and reasons & _INVALID_KEY_REASONS and "key" in message.lower():
        return SourceAuthError(message)
    if status_code == 403 and not reasons & _QUOTA_ERROR_REASONS:
        return SourceAuthError(message)
    return SourceUpstreamError(message, status_code=status_code, payload=error or payload)


def _error_reasons(error: Mapping[str, Any]) -> set[str]:
    reasons: set[str] = set()
    raw_errors = error.get("errors")
    if isinstance(raw_errors, list):
        for item in cast(list[object], raw_errors):
            if isinstance(item, dict):
                reason = _text(cast(dict[str, Any], item).get("reason"))
                if reason:
                    reasons.add(reason)
    return reasons


def _parse_json_dict(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, dict):
        return cast(dict[str, Any], parsed)
    return {}


def _default_thumbnail(raw_thumbnails: object) -> VideoThumbnail:
    if not isinstance(raw_thumbnails, dict):
        return VideoThumbnail()
    default = cast(dict[str, Any], raw_thumbnails).get("default")
    if not isinstance(default, dict):
        return VideoThumbnail()
    thumbnail = cast(dict[str, Any], default)
    return VideoThumbnail(
        url=_text(thumbnail.get("url")),
        width=_int(thumbnail.get("width")),
        height=_int(thumbnail.get("height")),
    )


def _parse_published_at(raw_value: object) -> datetime | None:
    if not isinstance(raw_value, str) or not raw_value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(raw_value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _text(value: object) -> str:
    if isinstance(value, str):
        return value
    return ""


def _int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0

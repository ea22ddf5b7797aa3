from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_storage_timestamp(value: datetime) -> str:
    # Fixed precision keeps lexicographic order equal to chronological order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_storage_timestamp(raw_value: object) -> datetime:
    if not isinstance(raw_value, str):
        raise ValueError(f"expected ISO timestamp text, got {type(raw_value).__name__}")
    parsed = datetime.fromisoformat(raw_value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)

# foodsync/utils/timestamps.py
# ISO-8601 helpers shared by the merge engine, sanitizer and client

from __future__ import annotations

from datetime import datetime, timezone


def to_timestamp(value: str | None) -> float:
    """Parse an ISO-8601 string to epoch milliseconds; empty or invalid -> 0."""
    if not value:
        return 0.0
    if isinstance(value, str) and value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return 0.0
    if parsed.tzinfo is None:
        # Naive stamps are treated as UTC
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """Render as ``2024-05-01T10:00:00.000Z`` (millisecond precision, UTC)."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"

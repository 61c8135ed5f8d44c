"""Timestamp parsing and normalization helpers.

Platforms disagree on timestamp formats (ISO-8601 with ``Z`` or offsets,
fractional seconds of any precision, epoch milliseconds). Everything is
normalized to timezone-aware UTC datetimes.
"""

import re
from datetime import datetime, timezone

_FRACTION_RE = re.compile(r"\.(\d+)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value) -> datetime | None:
    """Parse an ISO-8601 string, epoch millis or datetime into aware UTC.

    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return from_epoch_millis(int(value))
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most microsecond precision
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def from_epoch_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def to_epoch_millis(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


def to_iso(value: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SSZ``, the form every platform accepts."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")

"""Timestamp normalization helpers shared by the sanitizer and the parser."""

from datetime import datetime, timedelta, timezone
from typing import Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an upstream timestamp into an aware UTC datetime.

    Upstream emits ``YYYY-MM-DD HH:MM:SS`` without an offset; such naive
    values are taken as UTC. Returns None when the value cannot be parsed.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def ensure_utc_timezone(value: Optional[str]) -> Optional[str]:
    """Render ``value`` as an ISO-8601 UTC string, or pass it through unchanged."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return value
    return parsed.isoformat()


def from_epoch_millis(millis: float) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


def from_components(
    year: int,
    month_index: int = 0,
    day: int = 1,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
    millis: int = 0,
) -> datetime:
    """Build a UTC datetime from JavaScript ``Date`` constructor arguments.

    ``month_index`` is zero-based. Out-of-range parts roll over the way the
    JavaScript constructor does.
    """
    years, month = divmod(month_index, 12)
    base = datetime(year + years, month + 1, 1, tzinfo=timezone.utc)
    return base + timedelta(
        days=day - 1,
        hours=hour,
        minutes=minute,
        seconds=second,
        milliseconds=millis,
    )

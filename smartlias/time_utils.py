"""Time helpers for consistent UTC handling."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Return a naive UTC datetime for DB storage and comparisons."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime | None, tz_name: str = "Asia/Manila") -> datetime | None:
    """Convert a naive UTC datetime to an aware datetime in `tz_name`."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(tz_name))


def format_local(value: datetime | None, tz_name: str = "Asia/Manila", fmt: str = "%b %d, %Y %I:%M %p") -> str:
    local = to_local(value, tz_name)
    if local is None:
        return "-"
    return local.strftime(fmt)


def isoformat(value) -> str | None:
    if value is None:
        return None
    return value.isoformat()

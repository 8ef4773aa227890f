"""Timestamp parsing and display helpers."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo

MISSING_DISPLAY = "N/A"
DEFAULT_DISPLAY_TZ = "America/New_York"


def parse_timestamp(value: Any, strict: bool = False) -> datetime | None:
    """Parse an ISO8601 timestamp or date into an aware UTC datetime.

    Date-only values are read as UTC midnight and naive datetimes as UTC.
    Unparseable input returns None, or raises ValueError when ``strict``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            if strict:
                raise ValueError("empty timestamp")
            return None
        if text[-1] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            if strict:
                raise ValueError(f"invalid timestamp: {value!r}") from None
            return None
    else:
        if strict:
            raise ValueError(f"unsupported timestamp type: {type(value).__name__}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso_utc(value: Any) -> str | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.isoformat().replace("+00:00", "Z")


def day_key(value: Any) -> str | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.date().isoformat()


def to_display(value: Any, tz_name: str = DEFAULT_DISPLAY_TZ) -> str:
    """Format a UTC timestamp in a display zone as ``M/D/YYYY, h:mm:ss AM``."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return MISSING_DISPLAY
    local = parsed.astimezone(ZoneInfo(tz_name))
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{local.month}/{local.day}/{local.year}, {hour}:{local.minute:02d}:{local.second:02d} {suffix}"

"""Vowbook shared utilities."""

from .timefmt import MISSING_DISPLAY, day_key, parse_timestamp, to_display, to_iso_utc

__all__ = [
    "MISSING_DISPLAY",
    "day_key",
    "parse_timestamp",
    "to_display",
    "to_iso_utc",
]

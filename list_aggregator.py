"""Search, filter, statistics and pagination over a fully fetched list."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Sequence

from vowbook.timefmt import day_key, parse_timestamp

ACTIVE = "Active"
INACTIVE = "Inactive"
ALL = "All"
UNKNOWN = "Unknown"
DEFAULT_PAGE_SIZE = 10
TREND_DAYS = 7


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def search(rows: Sequence[dict], query: str | None, fields: Iterable[str]) -> list[dict]:
    """Case-insensitive substring match over ``fields``; empty query matches all."""
    if not query:
        return list(rows)
    needle = query.lower()
    fields = tuple(fields)
    return [row for row in rows if any(needle in _text(row.get(name)).lower() for name in fields)]


def apply_filters(rows: Sequence[dict], filters: Dict[str, Any] | None) -> list[dict]:
    active = {key: value for key, value in (filters or {}).items() if value not in (None, "", ALL)}
    if not active:
        return list(rows)
    result = []
    for row in rows:
        if all(_text(row.get(key)).lower() == _text(value).lower() for key, value in active.items()):
            result.append(row)
    return result


def histogram(rows: Sequence[dict], field_name: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for row in rows:
        value = row.get(field_name)
        label = UNKNOWN if value is None or value == "" else _text(value)
        counts[label] = counts.get(label, 0) + 1
    return counts


def _number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def total(rows: Sequence[dict], field_name: str) -> int | float:
    amount = sum((num for num in (_number(row.get(field_name)) for row in rows) if num is not None), Decimal(0))
    return int(amount) if amount == amount.to_integral_value() else float(amount)


def average(rows: Sequence[dict], field_name: str, places: int = 0) -> int | float:
    """Mean of the numeric values, rounded half up; 0 for an empty set."""
    values = [num for num in (_number(row.get(field_name)) for row in rows) if num is not None]
    if not values:
        return 0
    mean = sum(values) / len(values)
    if places <= 0:
        return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return float(mean.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def trend_by_day(rows: Sequence[dict], field_name: str, days: int = TREND_DAYS) -> list[dict]:
    counts: dict[str, int] = {}
    for row in rows:
        key = day_key(row.get(field_name))
        if key is None:
            continue
        counts[key] = counts.get(key, 0) + 1
    recent = sorted(counts)[-days:] if days > 0 else []
    return [{"date": key, "count": counts[key]} for key in recent]


def gained_since(rows: Sequence[dict], field_name: str, reference: datetime) -> dict[str, int]:
    ref = reference.astimezone(timezone.utc)
    starts = {
        "year": ref.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0),
        "month": ref.replace(day=1, hour=0, minute=0, second=0, microsecond=0),
        "day": ref.replace(hour=0, minute=0, second=0, microsecond=0),
    }
    stamps = [parse_timestamp(row.get(field_name)) for row in rows]
    stamps = [stamp for stamp in stamps if stamp is not None]
    return {key: sum(1 for stamp in stamps if stamp >= start) for key, start in starts.items()}


def count_by(rows: Sequence[dict], field_name: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for row in rows:
        value = row.get(field_name)
        if value is None:
            continue
        counts[_text(value)] = counts.get(_text(value), 0) + 1
    return counts


def child_stats(children: Sequence[dict], parents: int, trend_field: str | None = None) -> dict:
    """Total child rows, the per-parent average rounded half up, and the daily trend."""
    mean = Decimal(len(children)) / parents if parents else Decimal(0)
    stats: dict = {
        "total": len(children),
        "average": int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
    }
    if trend_field:
        stats["trend"] = trend_by_day(children, trend_field)
    return stats


def derive_status(start: Any, end: Any, reference: datetime) -> str:
    begins = parse_timestamp(start)
    ends = parse_timestamp(end)
    if begins is None or ends is None:
        return INACTIVE
    return ACTIVE if begins <= reference <= ends else INACTIVE


@dataclass
class Page:
    items: list[dict]
    page: int
    page_size: int
    total: int
    total_pages: int

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "total_pages": self.total_pages,
        }


def paginate(rows: Sequence[dict], page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Page:
    if page_size < 1:
        raise ValueError("page_size must be positive")
    count = len(rows)
    total_pages = math.ceil(count / page_size)
    current = min(max(page, 1), max(total_pages, 1))
    offset = (current - 1) * page_size
    return Page(list(rows[offset : offset + page_size]), current, page_size, count, total_pages)


@dataclass
class ListView:
    page: Page
    stats: dict
    query: str | None = None
    filters: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            **self.page.to_dict(),
            "query": self.query,
            "filters": self.filters,
            "stats": self.stats,
        }


@dataclass
class ListAggregator:
    search_fields: Sequence[str] = ()
    page_size: int = DEFAULT_PAGE_SIZE
    histogram_fields: Sequence[str] = ()
    sum_fields: Sequence[str] = ()
    average_fields: Sequence[str] = ()
    average_places: int = 0
    trend_field: str | None = None
    gained_field: str | None = None

    def stats(self, rows: Sequence[dict], reference: datetime) -> dict:
        stats: dict = {"count": len(rows)}
        if self.histogram_fields:
            stats["histograms"] = {name: histogram(rows, name) for name in self.histogram_fields}
        if self.sum_fields:
            stats["sums"] = {name: total(rows, name) for name in self.sum_fields}
        if self.average_fields:
            stats["averages"] = {name: average(rows, name, self.average_places) for name in self.average_fields}
        if self.trend_field:
            stats["trend"] = trend_by_day(rows, self.trend_field)
        if self.gained_field:
            stats["gained"] = gained_since(rows, self.gained_field, reference)
        return stats

    def aggregate(
        self,
        rows: List[dict],
        *,
        query: str | None = None,
        page: int = 1,
        filters: Dict[str, Any] | None = None,
        reference: datetime | None = None,
    ) -> ListView:
        """Statistics cover every row; search and filters only narrow the page."""
        reference = reference or datetime.now(timezone.utc)
        visible = apply_filters(search(rows, query, self.search_fields), filters)
        return ListView(
            page=paginate(visible, page, self.page_size),
            stats=self.stats(rows, reference),
            query=query,
            filters=dict(filters or {}),
        )

"""CSV import: one RFC 4180 reader and declarative column mappings."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Sequence, Tuple

from vowbook.timefmt import parse_timestamp, to_iso_utc

logger = logging.getLogger("vowbook.imports")

# Month-first forms spreadsheets export; read as UTC like ISO values without an offset.
US_TIME_FORMATS = (
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y",
)

SUCCESS = "Success"
FAILED = "Failed"


class ImportFormatError(ValueError):
    """The file as a whole cannot be read with the requested format."""


@dataclass(frozen=True)
class Column:
    field: str
    required: bool = False
    convert: Callable[[str], Any] | None = None
    header: str | None = None

    @property
    def header_name(self) -> str:
        return (self.header or self.field).strip().lower()


@dataclass(frozen=True)
class ImportFormat:
    kind: str
    columns: Sequence[Column]
    has_header: bool = True
    label_field: str | None = None
    multiline: bool = True


@dataclass
class ParsedRow:
    number: int
    values: dict = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def to_cents(text: str) -> int:
    try:
        amount = Decimal(text.strip().replace("$", "").replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"invalid amount: {text!r}") from None
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {text!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        raise ValueError(f"invalid integer: {text!r}") from None


def to_number(text: str) -> int | float:
    try:
        number = Decimal(text.strip().replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"invalid number: {text!r}") from None
    if not number.is_finite():
        raise ValueError(f"invalid number: {text!r}")
    return int(number) if number == number.to_integral_value() else float(number)


def parse_time(text: str) -> datetime:
    """ISO8601 first, then the month-first ``US_TIME_FORMATS``."""
    try:
        return parse_timestamp(text, strict=True)
    except ValueError:
        pass
    value = " ".join(text.split())
    for fmt in US_TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"invalid timestamp: {text!r}")


def to_iso(text: str) -> str:
    return to_iso_utc(parse_time(text))


def to_date(text: str) -> str:
    return parse_time(text).date().isoformat()


def to_tags(text: str) -> list[str]:
    return [part.strip() for part in text.split(",") if part.strip()]


def iter_records(text: str, multiline: bool = True) -> Iterator[Tuple[List[str], str | None]]:
    """Yield ``(cells, error)`` for each non-blank record.

    A record with an unterminated or stray quote is yielded as its first
    physical line with the parser error, and reading resumes on the next
    line. With ``multiline`` off every physical line is its own record.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    lines = list(io.StringIO(text, newline=""))
    start = 0
    while start < len(lines):
        source = lines[start:] if multiline else lines[start : start + 1]
        reader = csv.reader(source, strict=True)
        consumed = 0
        try:
            for cells in reader:
                consumed = reader.line_num
                if any(cell.strip() for cell in cells):
                    yield cells, None
        except csv.Error as exc:
            bad = start + consumed
            raw = lines[bad].rstrip("\r\n")
            if raw.strip():
                yield [raw], f"malformed csv: {exc}"
            start = bad + 1
            continue
        start += len(source)


def parse_csv(text: str, multiline: bool = True) -> list[list[str]]:
    """Quoted fields, embedded commas and newlines, doubled quotes. Blank lines are skipped."""
    records = []
    for cells, error in iter_records(text, multiline):
        if error:
            raise ImportFormatError(error)
        records.append(cells)
    return records


def _convert_row(number: int, cells: Sequence[str], positions: Dict[str, int], fmt: ImportFormat) -> ParsedRow:
    parsed = ParsedRow(number)
    for column in fmt.columns:
        index = positions.get(column.field)
        raw = cells[index].strip() if index is not None and index < len(cells) else ""
        if raw == "":
            if column.required:
                parsed.error = f"missing required field {column.field}"
                return parsed
            parsed.values[column.field] = None
            continue
        try:
            parsed.values[column.field] = column.convert(raw) if column.convert else raw
        except ValueError as exc:
            parsed.error = f"{column.field}: {exc}"
            return parsed
    return parsed


def read_rows(text: str, fmt: ImportFormat) -> list[ParsedRow]:
    """Rows are numbered from 1, counting data rows only."""
    records = list(iter_records(text, fmt.multiline))
    if fmt.has_header:
        if not records:
            raise ImportFormatError("file has no header row")
        if records[0][1]:
            raise ImportFormatError(f"header row: {records[0][1]}")
        header = [cell.strip().lower() for cell in records[0][0]]
        positions = {}
        for column in fmt.columns:
            if column.header_name in header:
                positions[column.field] = header.index(column.header_name)
        missing = [column.field for column in fmt.columns if column.required and column.field not in positions]
        if missing:
            raise ImportFormatError(f"missing required columns: {', '.join(missing)}")
        width = len(header)
        body = records[1:]
    else:
        positions = {column.field: index for index, column in enumerate(fmt.columns)}
        width = len(fmt.columns)
        body = records

    rows = []
    for number, (cells, error) in enumerate(body, start=1):
        if error:
            rows.append(ParsedRow(number, error=error))
            continue
        if len(cells) != width:
            rows.append(ParsedRow(number, error=f"expected {width} fields, found {len(cells)}"))
            continue
        rows.append(_convert_row(number, cells, positions, fmt))
    return rows


@dataclass
class ImportEntry:
    row: int
    label: str | None
    status: str
    error: str | None = None

    def to_dict(self) -> dict:
        return {"row": self.row, "label": self.label, "status": self.status, "error": self.error}


@dataclass
class ImportReport:
    kind: str
    entries: List[ImportEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for entry in self.entries if entry.status == SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for entry in self.entries if entry.status == FAILED)

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "success"
        return "partial" if self.succeeded else "failed"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "entries": [entry.to_dict() for entry in self.entries],
        }


RowHandler = Callable[[dict], Awaitable[Any]]


async def run_import(
    fmt: ImportFormat,
    text: str,
    handler: RowHandler,
    on_progress: Callable[[int, int], None] | None = None,
) -> ImportReport:
    """Feed each well-formed row to ``handler``; a failing row never stops the run."""
    rows = read_rows(text, fmt)
    report = ImportReport(fmt.kind)
    for done, parsed in enumerate(rows, start=1):
        label = None
        if fmt.label_field and parsed.values.get(fmt.label_field) is not None:
            label = str(parsed.values[fmt.label_field])
        if not parsed.ok:
            report.entries.append(ImportEntry(parsed.number, label, FAILED, parsed.error))
            logger.info("import_row_rejected kind=%s row=%s error=%s", fmt.kind, parsed.number, parsed.error)
        else:
            try:
                await handler(parsed.values)
            except Exception as exc:
                logger.warning("import_row_failed kind=%s row=%s error=%s", fmt.kind, parsed.number, exc)
                report.entries.append(ImportEntry(parsed.number, label, FAILED, str(exc)))
            else:
                report.entries.append(ImportEntry(parsed.number, label, SUCCESS))
        if on_progress:
            on_progress(done, len(rows))
    logger.info(
        "import_finished kind=%s total=%s succeeded=%s failed=%s",
        fmt.kind,
        report.total,
        report.succeeded,
        report.failed,
    )
    return report

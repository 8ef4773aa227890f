"""CSV import kinds: job board posts, couples and bookings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict

from csv_records import (
    Column,
    ImportFormat,
    ImportReport,
    run_import,
    to_cents,
    to_date,
    to_int,
    to_iso,
    to_number,
    to_tags,
)
from vowbook.timefmt import to_iso_utc

logger = logging.getLogger("vowbook.imports")

JOB_BOARD_FORMAT = ImportFormat(
    kind="job_board",
    has_header=False,
    multiline=False,
    label_field="job_type",
    columns=(
        Column("job_type", required=True),
        Column("description"),
        Column("couple_id", required=True),
        Column("price", convert=to_cents),
        Column("service_package_id", required=True),
        Column("venue_id", required=True),
        Column("event_start_time", convert=to_iso),
        Column("event_end_time", convert=to_iso),
    ),
)

COUPLES_FORMAT = ImportFormat(
    kind="couples",
    label_field="name",
    columns=(
        Column("name", required=True),
        Column("email", required=True),
        Column("phone"),
        Column("partner1_name"),
        Column("partner2_name"),
        Column("wedding_date", convert=to_date),
        Column("budget", convert=to_number),
        Column("vibe_tags", convert=to_tags),
        Column("venue_name"),
        Column("guest_count", convert=to_int),
        Column("venue_city"),
        Column("venue_state"),
    ),
)

BOOKINGS_FORMAT = ImportFormat(
    kind="bookings",
    label_field="couple_name",
    columns=(
        Column("couple_name", required=True),
        Column("vendor_name", required=True),
        Column("service_type"),
        Column("amount", required=True, convert=to_cents),
        Column("status"),
        Column("venue_name"),
        Column("start_time", required=True, convert=to_iso),
        Column("end_time", required=True, convert=to_iso),
    ),
)

Clock = Callable[[], datetime]
Handler = Callable[[dict], Awaitable[Any]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def _find_one_by_name(backend, table: str, name: str, label: str) -> dict:
    rows = await backend.select(table, "id, name", ilike={"name": name}, limit=2)
    if not rows:
        raise ValueError(f"{label} not found: {name}")
    if len(rows) > 1:
        raise ValueError(f"{label} name is ambiguous: {name}")
    return rows[0]


def _job_board_handler(backend, clock: Clock) -> Handler:
    async def handle(values: dict) -> None:
        stamp = to_iso_utc(clock())
        await backend.insert(
            "job_board",
            {**values, "is_open": True, "created_at": stamp, "updated_at": stamp},
        )

    return handle


def _couples_handler(backend, clock: Clock) -> Handler:
    async def handle(values: dict) -> None:
        user = await backend.create_user(values["email"], metadata={"name": values["name"], "role": "couple"})
        stamp = to_iso_utc(clock())
        try:
            await backend.insert(
                "couples",
                {**values, "user_id": user["id"], "created_at": stamp, "updated_at": stamp},
            )
        except Exception:
            try:
                await backend.delete_user(user["id"])
            except Exception as cleanup_exc:
                logger.warning("import_compensation_failed kind=couples user_id=%s error=%s", user["id"], cleanup_exc)
            raise

    return handle


def _bookings_handler(backend, clock: Clock) -> Handler:
    async def handle(values: dict) -> None:
        couple = await _find_one_by_name(backend, "couples", values["couple_name"], "Couple")
        vendor = await _find_one_by_name(backend, "vendors", values["vendor_name"], "Vendor")
        service_type = values.get("service_type") or "Unknown"
        stamp = to_iso_utc(clock())
        booking = {
            "couple_id": couple["id"],
            "vendor_id": vendor["id"],
            "status": values.get("status") or "pending",
            "amount": values["amount"],
            "service_type": service_type,
            "created_at": stamp,
            "updated_at": stamp,
        }
        if values.get("venue_name"):
            venues = await backend.select("venues", "id, name", ilike={"name": values["venue_name"]}, limit=2)
            if len(venues) == 1:
                booking["venue_id"] = venues[0]["id"]
        created = await backend.insert("bookings", booking)
        try:
            await backend.insert(
                "events",
                {
                    "couple_id": couple["id"],
                    "vendor_id": vendor["id"],
                    "booking_id": created.get("id"),
                    "start_time": values["start_time"],
                    "end_time": values["end_time"],
                    "type": values.get("service_type") or "Event",
                    "title": f"{values['couple_name']} - {service_type}",
                    "created_at": stamp,
                    "updated_at": stamp,
                },
            )
        except Exception:
            try:
                await backend.delete("bookings", created.get("id"))
            except Exception as cleanup_exc:
                logger.warning("import_compensation_failed kind=bookings booking_id=%s error=%s", created.get("id"), cleanup_exc)
            raise

    return handle


@dataclass(frozen=True)
class ImportKind:
    fmt: ImportFormat
    make_handler: Callable[[Any, Clock], Handler]


IMPORT_KINDS: Dict[str, ImportKind] = {
    "job_board": ImportKind(JOB_BOARD_FORMAT, _job_board_handler),
    "couples": ImportKind(COUPLES_FORMAT, _couples_handler),
    "bookings": ImportKind(BOOKINGS_FORMAT, _bookings_handler),
}


def get_import_kind(kind: str) -> ImportKind | None:
    return IMPORT_KINDS.get(kind)


async def _record_history(backend, report: ImportReport, filename: str | None, user_id: str | None, clock: Clock) -> None:
    entry = {
        "type": report.kind,
        "filename": filename,
        "user_id": user_id,
        "timestamp": to_iso_utc(clock()),
        "rows_added": report.succeeded,
        "errors": report.failed,
        "status": report.status,
        "error_details": [item.to_dict() for item in report.entries if item.error],
    }
    try:
        await backend.insert("import_history", entry)
    except Exception as exc:
        logger.warning("import_history_failed kind=%s error=%s", report.kind, exc)


async def run_named_import(
    backend,
    kind: str,
    text: str,
    *,
    filename: str | None = None,
    user_id: str | None = None,
    clock: Clock | None = None,
) -> ImportReport:
    """Run one import kind over ``text`` and record it in ``import_history``.

    Raises ``KeyError`` for an unknown kind and ``ImportFormatError`` when the
    file as a whole is unreadable.
    """
    entry = IMPORT_KINDS.get(kind)
    if entry is None:
        raise KeyError(kind)
    clock = clock or _utc_now
    logger.info("import_started kind=%s filename=%s user_id=%s", kind, filename, user_id)
    report = await run_import(entry.fmt, text, entry.make_handler(backend, clock))
    await _record_history(backend, report, filename, user_id, clock)
    return report

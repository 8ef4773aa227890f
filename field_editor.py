"""Inline single-field editing over a loaded record."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable

from notices import Notifier
from vowbook.timefmt import to_iso_utc

logger = logging.getLogger("vowbook.field_editor")

VIEWING = "viewing"
EDITING = "editing"

_LOCKED_FIELDS = {"id"}


@dataclass
class FieldEditorError(Exception):
    code: str
    message: str
    field: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (field={self.field})" if self.field else base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FieldEditor:
    """Per-field ``viewing -> editing -> viewing`` state machine.

    Each field has its own state and draft. ``save`` writes exactly the field
    and the update timestamp; the local record is only patched after the
    backend confirms the write, and a failed save leaves the field editing
    with its draft intact.
    """

    def __init__(
        self,
        backend,
        table: str,
        record_id: Any,
        record: dict,
        *,
        editable: Iterable[str] | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
        updated_at_field: str = "updated_at",
    ) -> None:
        self._backend = backend
        self.table = table
        self.record_id = record_id
        self.record = copy.deepcopy(record)
        self.notifier = notifier or Notifier()
        self._clock = clock or _utc_now
        self._updated_at_field = updated_at_field
        self._editable = set(editable) if editable is not None else None
        self._states: Dict[str, str] = {}
        self._drafts: Dict[str, Any] = {}

    def _check_editable(self, field: str) -> None:
        if field in _LOCKED_FIELDS or field == self._updated_at_field:
            raise FieldEditorError("FIELD_NOT_EDITABLE", f"{field} cannot be edited", field)
        if self._editable is not None and field not in self._editable:
            raise FieldEditorError("FIELD_NOT_EDITABLE", f"{field} is not editable", field)

    def state(self, field: str) -> str:
        return self._states.get(field, VIEWING)

    def draft(self, field: str) -> Any:
        if self.state(field) != EDITING:
            raise FieldEditorError("FIELD_NOT_EDITING", f"{field} is not being edited", field)
        return self._drafts[field]

    def begin(self, field: str) -> None:
        self._check_editable(field)
        if self.state(field) == EDITING:
            return
        self._states[field] = EDITING
        self._drafts[field] = copy.deepcopy(self.record.get(field))

    def change(self, field: str, value: Any) -> None:
        if self.state(field) != EDITING:
            raise FieldEditorError("FIELD_NOT_EDITING", f"{field} is not being edited", field)
        self._drafts[field] = value

    def cancel(self, field: str) -> None:
        self._states[field] = VIEWING
        self._drafts.pop(field, None)

    async def save(self, field: str) -> bool:
        if self.state(field) != EDITING:
            raise FieldEditorError("FIELD_NOT_EDITING", f"{field} is not being edited", field)
        value = self._drafts[field]
        stamp = to_iso_utc(self._clock())
        changes = {field: value, self._updated_at_field: stamp}
        try:
            await self._backend.update(self.table, self.record_id, changes)
        except Exception as exc:
            logger.warning(
                "field_save_failed table=%s id=%s field=%s error=%s",
                self.table,
                self.record_id,
                field,
                exc,
            )
            self.notifier.error(f"Failed to update {field}")
            return False
        self.record[field] = value
        self.record[self._updated_at_field] = stamp
        self._states[field] = VIEWING
        self._drafts.pop(field, None)
        logger.info("field_saved table=%s id=%s field=%s", self.table, self.record_id, field)
        self.notifier.success(f"{field} updated successfully")
        return True

    async def set_value(self, field: str, value: Any) -> bool:
        """Begin, change and save in one step."""
        self.begin(field)
        self.change(field, value)
        return await self.save(field)

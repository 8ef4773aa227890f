import os
import sys
import unittest
from datetime import datetime, timezone


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryBackend
from field_editor import EDITING, VIEWING, FieldEditor, FieldEditorError
from notices import Notifier

STAMP = datetime(2025, 9, 14, 12, tzinfo=timezone.utc)


class TestFieldEditor(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()
        self.record = {"id": "o1", "status": "pending", "notes": "hi", "updated_at": "2025-01-01T00:00:00Z"}
        self.backend.seed("store_orders", [self.record])
        self.notifier = Notifier()
        self.editor = FieldEditor(
            self.backend,
            "store_orders",
            "o1",
            self.record,
            notifier=self.notifier,
            clock=lambda: STAMP,
        )

    async def test_save_writes_field_and_timestamp_only(self) -> None:
        self.editor.begin("status")
        self.assertEqual(self.editor.draft("status"), "pending")
        self.editor.change("status", "shipped")
        self.assertTrue(await self.editor.save("status"))
        self.assertEqual(
            self.backend.writes[-1],
            ("update", "store_orders", "o1", {"status": "shipped", "updated_at": "2025-09-14T12:00:00Z"}),
        )
        self.assertEqual(self.editor.state("status"), VIEWING)
        self.assertEqual(self.editor.record["status"], "shipped")
        self.assertEqual(self.editor.record["updated_at"], "2025-09-14T12:00:00Z")
        self.assertEqual(self.notifier.items(), [{"level": "success", "message": "status updated successfully"}])

    async def test_failed_save_keeps_draft_and_record(self) -> None:
        self.backend.fail("update", "store_orders")
        self.editor.begin("status")
        self.editor.change("status", "shipped")
        with self.assertLogs("vowbook.field_editor", level="WARNING"):
            self.assertFalse(await self.editor.save("status"))
        self.assertEqual(self.editor.state("status"), EDITING)
        self.assertEqual(self.editor.draft("status"), "shipped")
        self.assertEqual(self.editor.record["status"], "pending")
        self.assertEqual(self.notifier.errors(), [{"level": "error", "message": "Failed to update status"}])

    async def test_cancel_discards_draft(self) -> None:
        self.editor.begin("notes")
        self.editor.change("notes", "changed")
        self.editor.cancel("notes")
        self.assertEqual(self.editor.state("notes"), VIEWING)
        self.assertEqual(self.editor.record["notes"], "hi")
        self.assertEqual(self.backend.writes, [])

    async def test_fields_edit_independently(self) -> None:
        self.editor.begin("status")
        self.editor.begin("notes")
        self.editor.change("status", "paid")
        self.editor.change("notes", "draft note")
        await self.editor.save("status")
        self.assertEqual(self.editor.state("notes"), EDITING)
        self.assertEqual(self.editor.draft("notes"), "draft note")

    async def test_locked_fields(self) -> None:
        for name in ("id", "updated_at"):
            with self.assertRaises(FieldEditorError) as ctx:
                self.editor.begin(name)
            self.assertEqual(ctx.exception.code, "FIELD_NOT_EDITABLE")

    async def test_editable_whitelist(self) -> None:
        editor = FieldEditor(self.backend, "store_orders", "o1", self.record, editable=["status"])
        editor.begin("status")
        with self.assertRaises(FieldEditorError):
            editor.begin("notes")

    async def test_change_requires_editing(self) -> None:
        with self.assertRaises(FieldEditorError) as ctx:
            self.editor.change("status", "x")
        self.assertEqual(ctx.exception.code, "FIELD_NOT_EDITING")
        with self.assertRaises(FieldEditorError):
            await self.editor.save("status")

    async def test_set_value(self) -> None:
        self.assertTrue(await self.editor.set_value("notes", "new"))
        self.assertEqual(self.backend.rows("store_orders")[0]["notes"], "new")


if __name__ == "__main__":
    unittest.main()

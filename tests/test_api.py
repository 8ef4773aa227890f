import os
import sys
import unittest
from unittest import mock


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fastapi.testclient import TestClient

os.environ["USE_MEMORY_BACKEND"] = "1"
os.environ["VOWBOOK_DISABLE_AUTH"] = "1"
os.environ["SUPABASE_URL"] = "http://localhost"

import app.main as main
from app.auth import dev_session
from app.email import EmailProviderError
from app.stores import MemoryBackend


class RecordingProvider:
    def __init__(self, error: Exception | None = None) -> None:
        self.sent = []
        self.error = error

    def send(self, message: dict) -> dict:
        if self.error:
            raise self.error
        self.sent.append(message)
        return {"id": "email_1"}


async def _admin_session(request):
    return dev_session("admin")


class TestAdminApi(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()
        self.backend.seed("couples", [{"id": "c1", "name": "Ana & Ben", "user_id": "u1"}])
        self.backend.seed("vendors", [{"id": "v1", "name": "Bloom Florals", "user_id": "u2", "profile_photo": None}])
        self.backend.seed(
            "store_orders",
            [
                {"id": "o1", "user_id": "u1", "status": "pending", "total_amount": 40, "created_at": "2025-09-10T10:00:00Z"},
                {"id": "o2", "user_id": "u2", "status": "shipped", "total_amount": 10, "created_at": "2025-09-11T10:00:00Z"},
            ],
        )
        self.backend.seed("vendor_forum_posts", [{"id": "f1", "vendor_id": "v1", "title": "Hello", "is_hidden": False}])
        patcher = mock.patch.object(main, "backend", self.backend)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = TestClient(main.app)

    def test_health_and_index(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})
        body = self.client.get("/pages").json()
        self.assertTrue(body["ok"])
        self.assertIn("orders", [page["key"] for page in body["pages"]])

    def test_list_with_filters(self) -> None:
        body = self.client.get("/pages/orders", params={"filter.status": "pending"}).json()
        self.assertTrue(body["ok"], body)
        self.assertEqual([item["id"] for item in body["items"]], ["o1"])
        self.assertEqual(body["items"][0]["user_name"], "Ana & Ben")
        self.assertEqual(body["stats"]["count"], 2)
        self.assertEqual(body["filters"], {"status": "pending"})

    def test_list_rejects_bad_reference_instant(self) -> None:
        res = self.client.get("/pages/ads", params={"as_of": "yesterday"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_PARAMETER")

    def test_unknown_entity(self) -> None:
        res = self.client.get("/pages/nope")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "ENTITY_NOT_FOUND")

    def test_list_failure(self) -> None:
        self.backend.fail("select", "store_orders")
        res = self.client.get("/pages/orders")
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.json()["notices"], [{"level": "error", "message": "Failed to load store orders"}])

    def test_detail(self) -> None:
        body = self.client.get("/pages/orders/o2").json()
        self.assertTrue(body["ok"], body)
        self.assertEqual(body["record"]["user_name"], "Bloom Florals")
        self.assertEqual(body["children"], {"items": []})

    def test_detail_not_found(self) -> None:
        res = self.client.get("/pages/orders/missing")
        self.assertEqual(res.status_code, 404)
        body = res.json()
        self.assertEqual(body["errors"][0]["code"], "RECORD_NOT_FOUND")
        self.assertEqual(body["errors"][0]["detail"], {"redirect": "/pages/orders"})
        self.assertEqual(body["notices"], [{"level": "error", "message": "Order not found"}])

    def test_save_field(self) -> None:
        res = self.client.patch("/pages/orders/o1/fields/status", json={"value": "shipped"})
        body = res.json()
        self.assertTrue(body["ok"], body)
        self.assertEqual(body["record"]["status"], "shipped")
        self.assertEqual(body["notices"], [{"level": "success", "message": "status updated successfully"}])
        stored = {row["id"]: row for row in self.backend.rows("store_orders")}
        self.assertEqual(stored["o1"]["status"], "shipped")

    def test_save_field_validation(self) -> None:
        res = self.client.patch("/pages/orders/o1/fields/id", json={"value": "x"})
        self.assertEqual(res.json()["errors"][0]["code"], "FIELD_NOT_EDITABLE")
        res = self.client.patch("/pages/orders/o1/fields/status", json={})
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_PARAMETER")

    def test_save_field_failure(self) -> None:
        self.backend.fail("update", "store_orders")
        res = self.client.patch("/pages/orders/o1/fields/status", json={"value": "shipped"})
        self.assertEqual(res.status_code, 502)
        body = res.json()
        self.assertEqual(body["errors"][0]["code"], "FIELD_SAVE_FAILED")
        self.assertEqual(body["notices"], [{"level": "error", "message": "Failed to update status"}])

    def test_forum_delete_requires_moderation(self) -> None:
        with mock.patch.object(main, "_resolve_session", _admin_session):
            res = self.client.delete("/pages/forum_posts/f1")
        self.assertEqual(res.status_code, 403)
        self.assertEqual(len(self.backend.rows("vendor_forum_posts")), 1)
        res = self.client.delete("/pages/forum_posts/f1")
        self.assertTrue(res.json()["ok"])
        self.assertEqual(self.backend.rows("vendor_forum_posts"), [])

    def test_add_record(self) -> None:
        res = self.client.post("/pages/venues", json={"name": " Oak Barn ", "city": "Austin", "phone": ""})
        self.assertEqual(res.status_code, 201)
        body = res.json()
        self.assertEqual(body["record"]["name"], "Oak Barn")
        self.assertNotIn("phone", body["record"])
        self.assertEqual(body["notices"], [{"level": "success", "message": "Venue added successfully"}])
        self.assertEqual([row["name"] for row in self.backend.rows("venues")], ["Oak Barn"])

    def test_add_record_errors(self) -> None:
        res = self.client.post("/pages/venues", json={"city": "Austin"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "FIELD_REQUIRED")
        self.assertEqual(res.json()["errors"][0]["path"], "name")
        res = self.client.post("/pages/orders", json={"status": "pending"})
        self.assertEqual(res.status_code, 405)
        self.assertEqual(res.json()["errors"][0]["code"], "RECORD_NOT_CREATABLE")
        self.backend.fail("insert", "venues")
        res = self.client.post("/pages/venues", json={"name": "Oak Barn"})
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.json()["errors"][0]["code"], "RECORD_CREATE_FAILED")
        self.assertEqual(res.json()["notices"], [{"level": "error", "message": "Failed to add venue"}])

    def test_forum_and_timeline_additions_require_capability(self) -> None:
        cases = [
            ("/pages/forum_posts", {"title": "Welcome", "content": "Hi all"}, "vendor_forum_posts"),
            ("/pages/forum_replies", {"post_id": "f1", "content": "Thanks"}, "vendor_forum_replies"),
            ("/pages/timelines", {"couple_id": "c1", "vendor_id": "v1"}, "timeline_shares"),
        ]
        for path, payload, table in cases:
            before = len(self.backend.rows(table))
            with mock.patch.object(main, "_resolve_session", _admin_session):
                res = self.client.post(path, json=payload)
            self.assertEqual(res.status_code, 403, path)
            self.assertEqual(len(self.backend.rows(table)), before, path)
            res = self.client.post(path, json=payload)
            self.assertEqual(res.status_code, 201, path)
            self.assertEqual(len(self.backend.rows(table)), before + 1, path)
        reply = self.backend.rows("vendor_forum_replies")[0]
        self.assertIsNone(reply["vendor_id"])
        body = self.client.get("/pages/forum_posts/f1").json()
        self.assertEqual([item["vendor_name"] for item in body["children"]["replies"]], ["Admin"])

    def test_write_routes_reject_bad_reference_instant(self) -> None:
        with mock.patch.dict(os.environ, {"VOWBOOK_REFERENCE_INSTANT": "soon"}):
            responses = [
                self.client.patch("/pages/orders/o1/fields/status", json={"value": "shipped"}),
                self.client.delete("/pages/orders/o2"),
                self.client.post("/pages/venues", json={"name": "Oak Barn"}),
            ]
        for res in responses:
            self.assertEqual(res.status_code, 400)
            self.assertEqual(res.json()["errors"][0]["code"], "INVALID_PARAMETER")
            self.assertEqual(res.json()["errors"][0]["path"], "VOWBOOK_REFERENCE_INSTANT")
        self.assertEqual(self.backend.writes, [])

    def test_vendor_photo_upload(self) -> None:
        res = self.client.post("/pages/vendors/v1/photo", files={"file": ("me.png", b"\x89PNG", "image/png")})
        body = res.json()
        self.assertTrue(body["ok"], body)
        self.assertEqual(body["url"], "memory://vendor-photos/vendor_photos/v1/me.png")
        self.assertEqual(body["record"]["profile_photo"], body["url"])
        self.assertEqual(self.backend.objects[("vendor-photos", "vendor_photos/v1/me.png")]["data"], b"\x89PNG")

    def test_vendor_photo_upload_failure(self) -> None:
        self.backend.fail("upload", "vendor-photos")
        res = self.client.post("/pages/vendors/v1/photo", files={"file": ("me.png", b"x", "image/png")})
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.json()["errors"][0]["code"], "UPLOAD_FAILED")
        self.assertIsNone(self.backend.rows("vendors")[0]["profile_photo"])

    def test_job_board_import(self) -> None:
        text = "Photography,Full day,c1,1500,sp1,ven1,2025-10-01T15:00:00Z,2025-10-01T23:00:00Z\nbroken,row\n"
        res = self.client.post("/imports/job_board", files={"file": ("jobs.csv", text.encode("utf-8"), "text/csv")})
        body = res.json()
        self.assertTrue(body["ok"], body)
        self.assertEqual(body["report"]["succeeded"], 1)
        self.assertEqual(body["report"]["failed"], 1)
        self.assertEqual(len(self.backend.rows("job_board")), 1)
        self.assertEqual(self.backend.rows("import_history")[0]["filename"], "jobs.csv")

    def test_import_errors(self) -> None:
        res = self.client.post("/imports/nope", files={"file": ("x.csv", b"a,b\n", "text/csv")})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "IMPORT_KIND_UNKNOWN")
        res = self.client.post("/imports/couples", files={"file": ("x.csv", b"phone\n555\n", "text/csv")})
        self.assertEqual(res.json()["errors"][0]["code"], "IMPORT_FORMAT_INVALID")

    def test_password_reset(self) -> None:
        res = self.client.post("/auth/password-reset", json={"email": "ana@example.com"})
        self.assertTrue(res.json()["ok"])
        self.assertEqual(self.backend.password_resets[0]["email"], "ana@example.com")
        res = self.client.post("/auth/password-reset", json={})
        self.assertEqual(res.status_code, 400)


class TestSendEmailFunction(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def test_sends_known_type(self) -> None:
        provider = RecordingProvider()
        with mock.patch.object(main, "_email_provider", return_value=provider):
            res = self.client.post("/functions/send-email", json={"email": "ana@example.com", "type": "login"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"success": True})
        self.assertEqual(provider.sent[0]["to"], ["ana@example.com"])

    def test_missing_fields(self) -> None:
        res = self.client.post("/functions/send-email", json={"email": "ana@example.com"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json(), {"error": "Email and type are required"})

    def test_unknown_type(self) -> None:
        with mock.patch.object(main, "_email_provider", return_value=RecordingProvider()):
            res = self.client.post("/functions/send-email", json={"email": "ana@example.com", "type": "promo"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json(), {"error": "Invalid email type"})

    def test_provider_failure(self) -> None:
        provider = RecordingProvider(error=EmailProviderError("Resend error: 500"))
        with mock.patch.object(main, "_email_provider", return_value=provider):
            res = self.client.post("/functions/send-email", json={"email": "ana@example.com", "type": "reset"})
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json(), {"error": "Failed to send email"})


if __name__ == "__main__":
    unittest.main()

import json
import os
import sys
import unittest

import httpx


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.email import (
    RESEND_API_URL,
    EmailProviderError,
    ResendProvider,
    UnknownEmailType,
    build_message,
    send_transactional_email,
)


class RecordingProvider:
    def __init__(self) -> None:
        self.sent = []

    def send(self, message: dict) -> dict:
        self.sent.append(message)
        return {"id": "email_1"}


class TestBuildMessage(unittest.TestCase):
    def test_reset_message(self) -> None:
        message = build_message("ana@example.com", "reset", site_url="https://vowbook.test/", sender="Vowbook <a@b.c>")
        self.assertEqual(message["to"], ["ana@example.com"])
        self.assertEqual(message["from"], "Vowbook <a@b.c>")
        self.assertEqual(message["subject"], "Reset Your Password")
        self.assertIn('href="https://vowbook.test/reset-password"', message["html"])

    def test_login_message_escapes_address(self) -> None:
        message = build_message("a&b<x>@example.com", "login", site_url="https://vowbook.test")
        self.assertEqual(message["subject"], "Your Login Details")
        self.assertIn("a&amp;b&lt;x&gt;@example.com", message["html"])

    def test_unknown_type(self) -> None:
        with self.assertRaises(UnknownEmailType):
            build_message("ana@example.com", "welcome")


class TestResendProvider(unittest.TestCase):
    def test_posts_to_resend(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "re_1"})

        provider = ResendProvider(api_key="key", transport=httpx.MockTransport(handler))
        message = {"from": "a@b.c", "to": ["x@y.z"], "subject": "Hi", "html": "<p>hi</p>"}
        self.assertEqual(provider.send(message), {"id": "re_1"})
        self.assertEqual(str(seen[0].url), RESEND_API_URL)
        self.assertEqual(seen[0].headers["authorization"], "Bearer key")
        self.assertEqual(json.loads(seen[0].content), message)

    def test_error_status(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad"}))
        with self.assertRaises(EmailProviderError):
            ResendProvider(api_key="key", transport=transport).send({})

    def test_missing_key(self) -> None:
        with self.assertRaises(EmailProviderError):
            ResendProvider(api_key="").send({})


class TestSendTransactional(unittest.TestCase):
    def test_builds_and_sends(self) -> None:
        provider = RecordingProvider()
        with self.assertLogs("vowbook.email", level="INFO"):
            result = send_transactional_email("ana@example.com", "reset", provider=provider)
        self.assertEqual(result, {"id": "email_1"})
        self.assertEqual(provider.sent[0]["subject"], "Reset Your Password")


if __name__ == "__main__":
    unittest.main()

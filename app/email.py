from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app import settings
from app.template_render import render_email

logger = logging.getLogger("vowbook.email")

RESEND_API_URL = "https://api.resend.com/emails"


class EmailProviderError(RuntimeError):
    pass


class UnknownEmailType(ValueError):
    pass


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    html: str


EMAIL_TEMPLATES = {
    "reset": EmailTemplate(
        subject="Reset Your Password",
        html='<p>Click <a href="{{ site_url }}/reset-password">here</a> to reset your password.</p>',
    ),
    "login": EmailTemplate(
        subject="Your Login Details",
        html=(
            "<p>Your account is ready! Use this email ({{ email }}) to log in at {{ site_url }}/. "
            "If you need to reset your password, follow the link below.</p>"
            '<p><a href="{{ site_url }}/reset-password">Reset Password</a></p>'
        ),
    ),
}


def build_message(email: str, kind: str, site_url: str | None = None, sender: str | None = None) -> dict:
    template = EMAIL_TEMPLATES.get(kind)
    if template is None:
        raise UnknownEmailType(kind)
    context = {"email": email, "site_url": (site_url or settings.site_url()).rstrip("/")}
    return {
        "from": sender or settings.email_from(),
        "to": [email],
        "subject": template.subject,
        "html": render_email(template.html, context),
    }


class EmailProvider:
    def send(self, message: dict) -> dict:
        raise NotImplementedError


class ResendProvider(EmailProvider):
    def __init__(self, api_key: str | None = None, timeout: float = 30.0, transport: httpx.BaseTransport | None = None) -> None:
        self._api_key = api_key if api_key is not None else settings.resend_api_key()
        self._timeout = timeout
        self._transport = transport

    def send(self, message: dict) -> dict:
        if not self._api_key:
            raise EmailProviderError("Missing RESEND_API_KEY")
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(RESEND_API_URL, json=message, headers=headers)
        except httpx.HTTPError as exc:
            raise EmailProviderError(f"Resend request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise EmailProviderError(f"Resend error: {resp.status_code} {resp.text}")
        return resp.json()


def get_provider(name: str = "resend") -> EmailProvider:
    if name == "resend":
        return ResendProvider(timeout=settings.http_timeout())
    raise EmailProviderError(f"Unknown provider: {name}")


def send_transactional_email(email: str, kind: str, provider: EmailProvider | None = None) -> dict:
    message = build_message(email, kind)
    result = (provider or get_provider()).send(message)
    logger.info("email_sent type=%s id=%s", kind, result.get("id") if isinstance(result, dict) else None)
    return result

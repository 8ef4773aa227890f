from __future__ import annotations

import os
from datetime import datetime, timezone

from vowbook.timefmt import DEFAULT_DISPLAY_TZ, parse_timestamp


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")


def supabase_service_role_key() -> str:
    return (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def supabase_audience() -> str | None:
    return (os.getenv("SUPABASE_JWT_AUDIENCE") or "").strip() or None


def supabase_enabled() -> bool:
    return bool(supabase_url() and supabase_service_role_key())


def use_memory_backend() -> bool:
    return _flag("USE_MEMORY_BACKEND") or not supabase_enabled()


def auth_disabled() -> bool:
    return _flag("VOWBOOK_DISABLE_AUTH")


def resend_api_key() -> str:
    return (os.getenv("RESEND_API_KEY") or "").strip()


def email_from() -> str:
    return (os.getenv("VOWBOOK_EMAIL_FROM") or "Vowbook <noreply@vowbook.app>").strip()


def site_url() -> str:
    return (os.getenv("VOWBOOK_SITE_URL") or "http://localhost:5173").strip().rstrip("/")


def display_tz() -> str:
    return (os.getenv("VOWBOOK_DISPLAY_TZ") or DEFAULT_DISPLAY_TZ).strip()


def page_size() -> int:
    try:
        size = int(os.getenv("VOWBOOK_PAGE_SIZE", "10"))
    except ValueError:
        return 10
    return size if size > 0 else 10


def http_timeout() -> float:
    try:
        return float(os.getenv("VOWBOOK_HTTP_TIMEOUT", "30"))
    except ValueError:
        return 30.0


def vendor_photos_bucket() -> str:
    return (os.getenv("SUPABASE_STORAGE_BUCKET_VENDOR_PHOTOS") or "vendor-photos").strip()


def reference_instant(override: str | None = None) -> datetime:
    """Instant used for status derivation: explicit override, then env, then now."""
    for candidate in (override, os.getenv("VOWBOOK_REFERENCE_INSTANT")):
        if candidate and candidate.strip():
            return parse_timestamp(candidate, strict=True)
    return datetime.now(timezone.utc)

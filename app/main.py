"""FastAPI app for the Vowbook admin dashboard."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
from datetime import datetime

import anyio

from csv_records import ImportFormatError
from field_editor import FieldEditorError
from notices import Notifier
from vowbook.timefmt import to_iso_utc

from app import settings
from app.auth import AdminSession, SupabaseAuthMiddleware, dev_session, has_capability, session_from_profile
from app.backend import SupabaseBackend
from app.email import EmailProvider, UnknownEmailType, get_provider, send_transactional_email
from app.entities import EntityPage, get_entity_page, list_entity_pages
from app.imports import get_import_kind, run_named_import
from app.pages import DetailPage, ListPage, create_record
from app.stores import MemoryBackend


app = FastAPI(title="Vowbook Admin")
logger = logging.getLogger("vowbook")
logging.basicConfig(level=logging.INFO)
_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("VOWBOOK_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS

if settings.use_memory_backend():
    backend = MemoryBackend()
else:
    backend = SupabaseBackend()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
if not settings.auth_disabled():
    if not settings.supabase_url():
        raise RuntimeError("SUPABASE_URL is required for auth")
    app.add_middleware(SupabaseAuthMiddleware, supabase_url=settings.supabase_url(), audience=settings.supabase_audience())


def _error_response(
    code: str,
    message: str,
    path: str | None = None,
    detail: dict | None = None,
    status: int = 400,
    notices: list | None = None,
) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
        "notices": notices or [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200, notices: list | None = None) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or [], "notices": notices or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


async def _safe_json(request: Request) -> dict:
    try:
        data = await request.json()
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


async def _resolve_session(request: Request) -> AdminSession | JSONResponse:
    if settings.auth_disabled():
        return dev_session()
    user = getattr(request.state, "user", None)
    if not isinstance(user, dict) or not user.get("id"):
        return _error_response("AUTH_REQUIRED", "Authentication required", path="Authorization", status=401)
    try:
        profile = await backend.fetch_one("profiles", user["id"])
    except Exception as exc:
        logger.warning("profile_lookup_failed user_id=%s error=%s", user["id"], exc)
        profile = None
    session = session_from_profile(user, profile)
    if not session.is_admin:
        logger.info("admin_access_denied user_id=%s role=%s level=%s", session.user_id, session.role, session.admin_level)
        return _error_response("FORBIDDEN", "Admin access required", status=403)
    return session


def _require_capability(session: AdminSession, capability: str, message: str = "Forbidden") -> JSONResponse | None:
    if not has_capability(session, capability):
        return _error_response("FORBIDDEN", message, detail={"capability": capability}, status=403)
    return None


def _entity_or_error(entity: str) -> EntityPage | JSONResponse:
    page = get_entity_page(entity)
    if page is None:
        return _error_response("ENTITY_NOT_FOUND", f"Unknown page: {entity}", path="entity", status=404)
    return page


def _reference(as_of: str | None = None) -> datetime | JSONResponse:
    try:
        return settings.reference_instant(as_of)
    except ValueError:
        if as_of:
            return _error_response("INVALID_PARAMETER", "as_of must be an ISO8601 timestamp", path="as_of")
        return _error_response(
            "INVALID_PARAMETER",
            "VOWBOOK_REFERENCE_INSTANT must be an ISO8601 timestamp",
            path="VOWBOOK_REFERENCE_INSTANT",
        )


def _detail_page(page: EntityPage, record_id: str, notifier: Notifier, reference: datetime) -> DetailPage:
    return DetailPage(
        backend,
        page,
        record_id,
        reference=reference,
        tz_name=settings.display_tz(),
        notifier=notifier,
    )


def _load_error(load, notifier: Notifier) -> JSONResponse:
    status = 404 if load.error == "RECORD_NOT_FOUND" else 502
    message = "Record not found" if load.error == "RECORD_NOT_FOUND" else "Failed to load record"
    return _error_response(load.error, message, detail={"redirect": load.redirect}, status=status, notices=notifier.drain())


def _email_provider() -> EmailProvider:
    return get_provider()


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.get("/pages")
async def pages_index(request: Request):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    denied = _require_capability(session, "records.read")
    if denied:
        return denied
    return _ok_response({"pages": list_entity_pages(), "session": session.to_dict()})


@app.get("/pages/{entity}")
async def list_records(entity: str, request: Request, q: str | None = None, page: int = 1, as_of: str | None = None):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    entity_page = _entity_or_error(entity)
    if isinstance(entity_page, JSONResponse):
        return entity_page
    denied = _require_capability(session, entity_page.read_capability)
    if denied:
        return denied
    reference = _reference(as_of)
    if isinstance(reference, JSONResponse):
        return reference
    filters = {
        key[len("filter.") :]: value
        for key, value in request.query_params.items()
        if key.startswith("filter.")
    }
    notifier = Notifier()
    list_page = ListPage(
        backend,
        entity_page,
        page_size=settings.page_size(),
        tz_name=settings.display_tz(),
        notifier=notifier,
    )
    try:
        view = await list_page.load(query=q, page_number=page, filters=filters, reference=reference)
    except Exception as exc:
        logger.warning("list_load_failed entity=%s error=%s", entity, exc)
        return _error_response("RECORD_LOAD_FAILED", f"Failed to load {entity_page.title}", status=502, notices=notifier.drain())
    finally:
        list_page.close()
    return _ok_response(
        {"entity": entity_page.key, "title": entity_page.title, "as_of": to_iso_utc(reference), **view.to_dict()},
        notices=notifier.drain(),
    )


@app.post("/pages/{entity}")
async def add_record(entity: str, request: Request):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    entity_page = _entity_or_error(entity)
    if isinstance(entity_page, JSONResponse):
        return entity_page
    if not entity_page.creatable:
        return _error_response("RECORD_NOT_CREATABLE", f"New {entity_page.noun} records cannot be added", status=405)
    denied = _require_capability(session, entity_page.create_capability, f"Not allowed to add {entity_page.noun}")
    if denied:
        return denied
    reference = _reference()
    if isinstance(reference, JSONResponse):
        return reference
    body = await _safe_json(request)
    notifier = Notifier()
    try:
        view = await create_record(
            backend,
            entity_page,
            body,
            reference=reference,
            tz_name=settings.display_tz(),
            notifier=notifier,
        )
    except FieldEditorError as exc:
        return _error_response(exc.code, exc.message, path=exc.field, notices=notifier.drain())
    if view is None:
        return _error_response("RECORD_CREATE_FAILED", f"Failed to add {entity_page.noun}", status=502, notices=notifier.drain())
    return _ok_response({"entity": entity_page.key, "record": view}, status=201, notices=notifier.drain())


@app.get("/pages/{entity}/{record_id}")
async def get_record(entity: str, record_id: str, request: Request, as_of: str | None = None):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    entity_page = _entity_or_error(entity)
    if isinstance(entity_page, JSONResponse):
        return entity_page
    denied = _require_capability(session, entity_page.read_capability)
    if denied:
        return denied
    reference = _reference(as_of)
    if isinstance(reference, JSONResponse):
        return reference
    notifier = Notifier()
    detail = _detail_page(entity_page, record_id, notifier, reference)
    try:
        load = await detail.load()
    finally:
        detail.close()
    if not load.ok:
        return _load_error(load, notifier)
    return _ok_response({"entity": entity_page.key, **load.to_dict()}, notices=notifier.drain())


@app.patch("/pages/{entity}/{record_id}/fields/{field}")
async def save_record_field(entity: str, record_id: str, field: str, request: Request):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    entity_page = _entity_or_error(entity)
    if isinstance(entity_page, JSONResponse):
        return entity_page
    denied = _require_capability(session, entity_page.write_capability)
    if denied:
        return denied
    if not entity_page.is_editable(field):
        return _error_response("FIELD_NOT_EDITABLE", f"{field} is not editable", path=field)
    body = await _safe_json(request)
    if "value" not in body:
        return _error_response("INVALID_PARAMETER", "value is required", path="value")
    reference = _reference()
    if isinstance(reference, JSONResponse):
        return reference
    notifier = Notifier()
    detail = _detail_page(entity_page, record_id, notifier, reference)
    try:
        load = await detail.load()
        if not load.ok:
            return _load_error(load, notifier)
        saved = await detail.save_field(field, body["value"])
    except FieldEditorError as exc:
        return _error_response(exc.code, exc.message, path=exc.field, notices=notifier.drain())
    finally:
        detail.close()
    if not saved:
        return _error_response("FIELD_SAVE_FAILED", f"Failed to update {field}", path=field, status=502, notices=notifier.drain())
    return _ok_response({"entity": entity_page.key, "record": detail.view}, notices=notifier.drain())


@app.delete("/pages/{entity}/{record_id}")
async def delete_record(entity: str, record_id: str, request: Request):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    entity_page = _entity_or_error(entity)
    if isinstance(entity_page, JSONResponse):
        return entity_page
    denied = _require_capability(session, entity_page.delete_capability, f"Not allowed to delete {entity_page.noun}")
    if denied:
        return denied
    reference = _reference()
    if isinstance(reference, JSONResponse):
        return reference
    notifier = Notifier()
    detail = _detail_page(entity_page, record_id, notifier, reference)
    deleted = await detail.delete()
    if not deleted:
        return _error_response("RECORD_DELETE_FAILED", f"Failed to delete {entity_page.noun}", status=502, notices=notifier.drain())
    return _ok_response({"entity": entity_page.key, "deleted": record_id}, notices=notifier.drain())


@app.post("/pages/vendors/{record_id}/photo")
async def upload_vendor_photo(record_id: str, request: Request, file: UploadFile = File(...)):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    denied = _require_capability(session, "records.write")
    if denied:
        return denied
    reference = _reference()
    if isinstance(reference, JSONResponse):
        return reference
    entity_page = get_entity_page("vendors")
    notifier = Notifier()
    detail = _detail_page(entity_page, record_id, notifier, reference)
    try:
        load = await detail.load()
        if not load.ok:
            return _load_error(load, notifier)
        filename = Path(file.filename or "photo").name
        storage_path = f"vendor_photos/{record_id}/{filename}"
        data = await file.read()
        try:
            await backend.upload(settings.vendor_photos_bucket(), storage_path, data, file.content_type)
        except Exception as exc:
            logger.warning("vendor_photo_upload_failed vendor_id=%s error=%s", record_id, exc)
            notifier.error("Failed to upload image")
            return _error_response("UPLOAD_FAILED", "Failed to upload image", path="file", status=502, notices=notifier.drain())
        url = backend.public_url(settings.vendor_photos_bucket(), storage_path)
        saved = await detail.save_field("profile_photo", url)
    finally:
        detail.close()
    if not saved:
        return _error_response("FIELD_SAVE_FAILED", "Failed to update profile_photo", path="profile_photo", status=502, notices=notifier.drain())
    return _ok_response({"entity": "vendors", "record": detail.view, "url": url}, notices=notifier.drain())


@app.post("/imports/{kind}")
async def import_csv(kind: str, request: Request, file: UploadFile = File(...)):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    if get_import_kind(kind) is None:
        return _error_response("IMPORT_KIND_UNKNOWN", f"Unknown import type: {kind}", path="kind", status=404)
    denied = _require_capability(session, "imports.run")
    if denied:
        return denied
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return _error_response("IMPORT_FORMAT_INVALID", "File must be UTF-8 encoded CSV", path="file")
    notifier = Notifier()
    try:
        report = await run_named_import(backend, kind, text, filename=file.filename, user_id=session.user_id)
    except ImportFormatError as exc:
        notifier.error(f"Import failed: {exc}")
        return _error_response("IMPORT_FORMAT_INVALID", str(exc), path="file", notices=notifier.drain())
    if report.succeeded:
        notifier.success(f"Successfully imported {report.succeeded} of {report.total} rows")
    if report.failed:
        notifier.error(f"Failed to import {report.failed} rows")
    return _ok_response({"report": report.to_dict()}, notices=notifier.drain())


@app.post("/auth/password-reset")
async def password_reset(request: Request):
    body = await _safe_json(request)
    email = body.get("email")
    if not isinstance(email, str) or not email.strip():
        return _error_response("INVALID_PARAMETER", "email is required", path="email")
    notifier = Notifier()
    try:
        await backend.send_password_reset(email.strip(), redirect_to=f"{settings.site_url()}/reset-password")
    except Exception as exc:
        logger.warning("password_reset_failed error=%s", exc)
        notifier.error("Failed to send password reset email")
        return _error_response("PASSWORD_RESET_FAILED", "Failed to send password reset email", status=502, notices=notifier.drain())
    notifier.success("Password reset email sent")
    return _ok_response({"sent": True}, notices=notifier.drain())


@app.post("/functions/send-email")
async def send_email(request: Request):
    session = await _resolve_session(request)
    if isinstance(session, JSONResponse):
        return session
    denied = _require_capability(session, "email.send")
    if denied:
        return denied
    body = await _safe_json(request)
    email = body.get("email")
    kind = body.get("type")
    if not isinstance(email, str) or not isinstance(kind, str) or not email.strip() or not kind.strip():
        return JSONResponse({"error": "Email and type are required"}, status_code=400)
    try:
        provider = _email_provider()
        await anyio.to_thread.run_sync(lambda: send_transactional_email(email, kind, provider=provider))
    except UnknownEmailType:
        return JSONResponse({"error": "Invalid email type"}, status_code=400)
    except Exception as exc:
        logger.error("email_send_failed type=%s error=%s", kind, exc)
        return JSONResponse({"error": "Failed to send email"}, status_code=500)
    return JSONResponse({"success": True}, status_code=200)

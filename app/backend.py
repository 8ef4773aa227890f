"""Async Supabase client: PostgREST tables, storage and auth."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Sequence, Tuple
from urllib.parse import quote

import httpx

from app import settings

logger = logging.getLogger("vowbook.backend")


class BackendError(RuntimeError):
    def __init__(self, message: str, status: int | None = None, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.detail = detail


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _in_literal(values: Iterable[Any]) -> str:
    quoted = []
    for value in values:
        text = _literal(value).replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{text}"')
    return f"in.({','.join(quoted)})"


def build_params(
    columns: str = "*",
    eq: Dict[str, Any] | None = None,
    in_: Tuple[str, Sequence[Any]] | None = None,
    ilike: Dict[str, str] | None = None,
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> List[Tuple[str, str]]:
    params: List[Tuple[str, str]] = [("select", columns)]
    for key, value in (eq or {}).items():
        params.append((key, "is.null" if value is None else f"eq.{_literal(value)}"))
    if in_ is not None:
        column, values = in_
        params.append((column, _in_literal(values)))
    for key, pattern in (ilike or {}).items():
        params.append((key, f"ilike.{pattern}"))
    if order_by:
        params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        return str(data.get("message") or data.get("msg") or data.get("error_description") or data.get("error") or data)
    return str(data)


class SupabaseBackend:
    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = (url or settings.supabase_url()).rstrip("/")
        self._key = key or settings.supabase_service_role_key()
        self._timeout = timeout if timeout is not None else settings.http_timeout()
        self._transport = transport
        if not self._url or not self._key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")

    def _headers(self, extra: Dict[str, str] | None = None) -> dict:
        headers = {"Authorization": f"Bearer {self._key}", "apikey": self._key}
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        content: bytes | None = None,
        headers: Dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self._url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    content=content,
                    headers=headers or self._headers(),
                )
        except httpx.HTTPError as exc:
            logger.warning("backend_request_failed method=%s path=%s error=%s", method, path, exc)
            raise BackendError(f"request failed: {exc}") from exc
        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.warning(
                "backend_request_rejected method=%s path=%s status=%s message=%s",
                method,
                path,
                resp.status_code,
                message,
            )
            raise BackendError(message, status=resp.status_code, detail={"body": resp.text})
        return resp

    # Tables

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        eq: Dict[str, Any] | None = None,
        in_: Tuple[str, Sequence[Any]] | None = None,
        ilike: Dict[str, str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        if in_ is not None and not in_[1]:
            return []
        params = build_params(columns, eq, in_, ilike, order_by, descending, limit)
        resp = await self._request("GET", f"/rest/v1/{table}", params=params)
        return resp.json() or []

    async def fetch_one(self, table: str, value: Any, match: str = "id", columns: str = "*") -> dict | None:
        rows = await self.select(table, columns, eq={match: value}, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, values: dict | list) -> Any:
        resp = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=values,
            headers=self._headers({"Prefer": "return=representation"}),
        )
        rows = resp.json() or []
        if isinstance(values, dict):
            return rows[0] if rows else dict(values)
        return rows

    async def update(self, table: str, record_id: Any, changes: dict, match: str = "id") -> dict:
        resp = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=build_params(eq={match: record_id}),
            json=changes,
            headers=self._headers({"Prefer": "return=representation"}),
        )
        rows = resp.json() or []
        if not rows:
            raise BackendError(f"{table} record not found", status=404)
        return rows[0]

    async def delete(self, table: str, record_id: Any, match: str = "id") -> None:
        await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=[(match, f"eq.{_literal(record_id)}")],
        )

    # Storage

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        headers = self._headers({"x-upsert": "true"})
        if content_type:
            headers["Content-Type"] = content_type
        await self._request("POST", f"/storage/v1/object/{bucket}/{quote(path, safe='/')}", content=data, headers=headers)
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._url}/storage/v1/object/public/{bucket}/{quote(path, safe='/')}"

    # Auth

    async def send_password_reset(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request("POST", "/auth/v1/recover", params=params, json={"email": email})

    async def create_user(self, email: str, password: str | None = None, metadata: dict | None = None) -> dict:
        payload: Dict[str, Any] = {"email": email, "email_confirm": True}
        if password:
            payload["password"] = password
        if metadata:
            payload["user_metadata"] = metadata
        resp = await self._request("POST", "/auth/v1/admin/users", json=payload)
        data = resp.json()
        return data.get("user", data) if isinstance(data, dict) else data

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/auth/v1/admin/users/{user_id}")

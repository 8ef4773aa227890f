"""Supabase JWT auth middleware and admin sessions."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from app import settings

logger = logging.getLogger("vowbook.auth")

_DEV_ORIGIN = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
PUBLIC_PATHS = {"/health", "/auth/password-reset"}

USER = "user"
ADMIN = "admin"
SUPER_ADMIN = "super_admin"
ADMIN_LEVELS = {USER: 0, ADMIN: 1, SUPER_ADMIN: 2}

_ADMIN_CAPABILITIES = frozenset({"records.read", "records.write", "imports.run", "email.send"})
_CAPABILITIES_BY_LEVEL = {
    USER: frozenset(),
    ADMIN: _ADMIN_CAPABILITIES,
    SUPER_ADMIN: _ADMIN_CAPABILITIES | {"forum.moderate", "timelines.share"},
}


class JwksCache:
    """Signing keys of the Supabase project.

    Keys are refetched once ``ttl`` seconds have passed, and again when a
    token names a ``kid`` the cached set does not contain (key rotation).
    """

    def __init__(self, url: str, ttl: float = 600.0, timeout: float = 10.0) -> None:
        self.url = url
        self.ttl = ttl
        self._timeout = timeout
        self._keys: list[dict] = []
        self._fetched_at = 0.0

    def _refresh(self) -> None:
        resp = httpx.get(self.url, timeout=self._timeout)
        resp.raise_for_status()
        self._keys = list(resp.json().get("keys") or [])
        self._fetched_at = time.time()

    def _lookup(self, kid: str | None) -> dict | None:
        return next((key for key in self._keys if key.get("kid") == kid), None)

    def key_for(self, kid: str | None) -> dict | None:
        if not self._keys or time.time() - self._fetched_at >= self.ttl:
            self._refresh()
        key = self._lookup(kid)
        if key is None:
            self._refresh()
            key = self._lookup(kid)
        return key


def verify_access_token(token: str, jwks: JwksCache, issuer: str, audience: Optional[str]) -> dict:
    header = jwt.get_unverified_header(token)
    key = jwks.key_for(header.get("kid"))
    if key is None:
        raise JWTError("Unknown kid")
    return jwt.decode(
        token,
        key,
        algorithms=[header.get("alg", "RS256")],
        issuer=issuer,
        audience=audience,
        options={"verify_aud": audience is not None},
    )


def get_bearer_token(request: Request) -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer":
        return None
    return token.strip() or None


def _unauthorized(request: Request, message: str, detail: dict | None = None) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": "AUTH_REQUIRED", "message": message, "path": "Authorization", "detail": detail}],
        "warnings": [],
        "notices": [],
    }
    response = JSONResponse(body, status_code=401)
    # CORSMiddleware does not see responses produced here.
    origin = request.headers.get("origin")
    if origin and _DEV_ORIGIN.match(origin):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    """Verifies the bearer token and exposes its claims as ``request.state.user``."""

    def __init__(self, app, supabase_url: str, audience: Optional[str] = None) -> None:
        super().__init__(app)
        base = supabase_url.rstrip("/")
        self._issuer = f"{base}/auth/v1"
        self._jwks = JwksCache(f"{self._issuer}/.well-known/jwks.json")
        self._audience = audience

    def _skips(self, request: Request) -> bool:
        return settings.auth_disabled() or request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS

    async def dispatch(self, request: Request, call_next):
        if self._skips(request):
            return await call_next(request)
        started = time.perf_counter()
        token = get_bearer_token(request)
        if token is None:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized(request, "Missing bearer token")
        try:
            claims = verify_access_token(token, self._jwks, self._issuer, self._audience)
        except Exception as exc:
            logger.warning("auth_invalid_token path=%s error=%s", request.url.path, exc)
            return _unauthorized(request, "Invalid bearer token", {"error": str(exc)})
        request.state.user = {
            "id": claims.get("sub"),
            "email": claims.get("email"),
            "role": claims.get("role"),
            "claims": claims,
        }
        logger.debug("auth_ok path=%s user_id=%s ms=%.1f", request.url.path, claims.get("sub"), (time.perf_counter() - started) * 1000)
        return await call_next(request)


@dataclass(frozen=True)
class AdminSession:
    user_id: str | None
    email: str | None
    role: str
    admin_level: str
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN and ADMIN_LEVELS.get(self.admin_level, 0) >= ADMIN_LEVELS[ADMIN]

    @property
    def is_super_admin(self) -> bool:
        return self.role == ADMIN and self.admin_level == SUPER_ADMIN

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "role": self.role,
            "admin_level": self.admin_level,
            "capabilities": sorted(self.capabilities),
        }


def session_from_profile(user: dict | None, profile: dict | None) -> AdminSession:
    """Build a session from auth claims and the ``profiles`` row.

    A missing profile yields a plain user session with no capabilities.
    """
    user = user or {}
    profile = profile or {}
    role = str(profile.get("role") or USER)
    level = str(profile.get("admin_level") or USER)
    if level not in ADMIN_LEVELS:
        level = USER
    capabilities = _CAPABILITIES_BY_LEVEL[level] if role == ADMIN else frozenset()
    return AdminSession(
        user_id=user.get("id"),
        email=user.get("email"),
        role=role,
        admin_level=level,
        capabilities=frozenset(capabilities),
    )


def dev_session(level: str = SUPER_ADMIN) -> AdminSession:
    return session_from_profile({"id": "dev", "email": "dev@localhost"}, {"role": ADMIN, "admin_level": level})


def has_capability(session: AdminSession | None, capability: str) -> bool:
    if session is None or not session.is_admin:
        return False
    return capability in session.capabilities

"""In-memory backend with the same async surface as SupabaseBackend."""

from __future__ import annotations

import copy
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence, Tuple

from app.backend import BackendError


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _same(left: Any, right: Any) -> bool:
    if left == right:
        return True
    if left is None or right is None:
        return False
    return str(left) == str(right)


def _ilike(pattern: str) -> re.Pattern:
    parts = [re.escape(part) for part in pattern.split("%")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


class MemoryBackend:
    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, dict]] = {}
        self._failures: Dict[Tuple[str, str], Exception] = {}
        self.objects: Dict[Tuple[str, str], dict] = {}
        self.users: Dict[str, dict] = {}
        self.password_resets: List[dict] = []
        self.writes: List[tuple] = []
        self.calls: List[tuple] = []

    def seed(self, table: str, rows: Sequence[dict]) -> list[dict]:
        bucket = self._tables.setdefault(table, {})
        stored = []
        for row in rows:
            record = copy.deepcopy(row)
            record.setdefault("id", str(uuid.uuid4()))
            bucket[str(record["id"])] = record
            stored.append(copy.deepcopy(record))
        return stored

    def rows(self, table: str) -> list[dict]:
        return [copy.deepcopy(row) for row in self._tables.get(table, {}).values()]

    def fail(self, op: str, table: str, error: Exception | None = None) -> None:
        """Make every ``op`` against ``table`` raise until ``clear_failures``."""
        self._failures[(op, table)] = error or BackendError(f"{op} on {table} failed", status=500)

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        error = self._failures.get((op, table))
        if error is not None:
            raise error

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
        self._check("select", table)
        rows = list(self._tables.get(table, {}).values())
        for key, value in (eq or {}).items():
            rows = [row for row in rows if _same(row.get(key), value)]
        if in_ is not None:
            column, values = in_
            rows = [row for row in rows if any(_same(row.get(column), value) for value in values)]
        for key, pattern in (ilike or {}).items():
            regex = _ilike(pattern)
            rows = [row for row in rows if row.get(key) is not None and regex.match(str(row.get(key)))]
        if order_by:
            present = [row for row in rows if row.get(order_by) is not None]
            missing = [row for row in rows if row.get(order_by) is None]
            present.sort(key=lambda row: row.get(order_by), reverse=descending)
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        if columns and columns.strip() != "*":
            names = [name.strip() for name in columns.split(",") if name.strip()]
            rows = [{name: row.get(name) for name in names} for row in rows]
        return copy.deepcopy(rows)

    async def fetch_one(self, table: str, value: Any, match: str = "id", columns: str = "*") -> dict | None:
        rows = await self.select(table, columns, eq={match: value}, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, values: dict | list) -> Any:
        self._check("insert", table)
        batch = values if isinstance(values, list) else [values]
        stored = []
        for item in batch:
            record = copy.deepcopy(item)
            record.setdefault("id", str(uuid.uuid4()))
            record.setdefault("created_at", _now())
            self._tables.setdefault(table, {})[str(record["id"])] = record
            self.writes.append(("insert", table, copy.deepcopy(record)))
            stored.append(copy.deepcopy(record))
        return stored if isinstance(values, list) else stored[0]

    async def update(self, table: str, record_id: Any, changes: dict, match: str = "id") -> dict:
        self._check("update", table)
        for record in self._tables.get(table, {}).values():
            if _same(record.get(match), record_id):
                record.update(copy.deepcopy(changes))
                self.writes.append(("update", table, record_id, copy.deepcopy(changes)))
                return copy.deepcopy(record)
        raise BackendError(f"{table} record not found", status=404)

    async def delete(self, table: str, record_id: Any, match: str = "id") -> None:
        self._check("delete", table)
        bucket = self._tables.get(table, {})
        for key, record in list(bucket.items()):
            if _same(record.get(match), record_id):
                del bucket[key]
        self.writes.append(("delete", table, record_id))

    # Storage

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        self._check("upload", bucket)
        self.objects[(bucket, path)] = {"data": bytes(data), "content_type": content_type}
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"memory://{bucket}/{path}"

    # Auth

    async def send_password_reset(self, email: str, redirect_to: str | None = None) -> None:
        self._check("send_password_reset", "auth")
        self.password_resets.append({"email": email, "redirect_to": redirect_to})

    async def create_user(self, email: str, password: str | None = None, metadata: dict | None = None) -> dict:
        self._check("create_user", "auth")
        if any(user.get("email") == email for user in self.users.values()):
            raise BackendError("A user with this email address has already been registered", status=422)
        user = {"id": str(uuid.uuid4()), "email": email, "user_metadata": copy.deepcopy(metadata or {})}
        self.users[user["id"]] = user
        self.writes.append(("create_user", "auth", user["id"]))
        return copy.deepcopy(user)

    async def delete_user(self, user_id: str) -> None:
        self._check("delete_user", "auth")
        self.users.pop(user_id, None)
        self.writes.append(("delete_user", "auth", user_id))

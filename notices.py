"""User-facing notices (toasts) collected while a page handles an action."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: str
    message: str

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message}


class Notifier:
    def __init__(self) -> None:
        self._items: List[Notice] = []

    def success(self, message: str) -> None:
        self._items.append(Notice(SUCCESS, message))

    def error(self, message: str) -> None:
        self._items.append(Notice(ERROR, message))

    def items(self) -> list[dict]:
        return [notice.to_dict() for notice in self._items]

    def errors(self) -> list[dict]:
        return [notice.to_dict() for notice in self._items if notice.level == ERROR]

    def drain(self) -> list[dict]:
        items = self.items()
        self._items.clear()
        return items

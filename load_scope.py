"""Cancellation scope for the backend calls issued by one page view."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("vowbook.load_scope")


class LoadCancelled(Exception):
    """Raised for work that settles after its scope was cancelled."""


@dataclass
class Outcome:
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LoadScope:
    """Tracks the in-flight loads of a page view.

    ``cancel()`` marks the scope dead and cancels what is still running; any
    result that arrives afterwards raises ``LoadCancelled`` instead of being
    handed back, and ``commit()`` refuses to apply state updates.
    """

    def __init__(self, name: str = "page") -> None:
        self.name = name
        self._cancelled = False
        self._tasks: set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        logger.info("load_scope_cancelled scope=%s in_flight=%s", self.name, len(pending))

    def _ensure_live(self) -> None:
        if self._cancelled:
            raise LoadCancelled(self.name)

    async def run(self, awaitable: Awaitable) -> Any:
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise LoadCancelled(self.name)
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._cancelled:
                raise LoadCancelled(self.name) from None
            raise
        finally:
            self._tasks.discard(task)
        self._ensure_live()
        return result

    async def gather(self, awaitables: Dict[str, Awaitable]) -> Dict[str, Outcome]:
        """Run named loads concurrently and return their settled outcomes."""
        keys = list(awaitables)
        results = await asyncio.gather(*(self.run(awaitables[key]) for key in keys), return_exceptions=True)
        self._ensure_live()
        outcomes: Dict[str, Outcome] = {}
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                outcomes[key] = Outcome(error=result)
            else:
                outcomes[key] = Outcome(value=result)
        return outcomes

    def commit(self, apply: Callable[[], Any]) -> bool:
        if self._cancelled:
            logger.info("load_scope_stale_result_discarded scope=%s", self.name)
            return False
        apply()
        return True

    async def __aenter__(self) -> "LoadScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._tasks:
            self.cancel()

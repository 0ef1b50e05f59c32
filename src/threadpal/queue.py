"""Per-conversation serialized execution."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from typing import Any, TypeAlias

from loguru import logger

Unit: TypeAlias = Callable[[], Awaitable[Any]]

_current_scope: ContextVar[str] = ContextVar("threadpal_scope", default="-")


def current_scope() -> str:
    """Queue key of the unit running in the current task, or ``-`` outside one."""
    return _current_scope.get()


class ConversationQueue:
    """Chains units of work per key so at most one runs at a time for that key.

    Units for different keys run concurrently. A failing unit is logged and
    does not stop later units for the same key. The table only holds keys
    with outstanding work.
    """

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Task[Any]] = {}

    def enqueue(self, key: str, unit: Unit) -> asyncio.Task[Any]:
        previous = self._tails.get(key)
        task = asyncio.create_task(self._run_after(key, previous, unit))
        self._tails[key] = task
        task.add_done_callback(lambda done: self._release(key, done))
        return task

    def _release(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]

    async def _run_after(self, key: str, previous: asyncio.Task[Any] | None, unit: Unit) -> Any:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        token = _current_scope.set(key)
        try:
            return await unit()
        except Exception:
            logger.exception("queue.unit.error key={}", key)
            return None
        finally:
            _current_scope.reset(token)

    def pending_keys(self) -> list[str]:
        return list(self._tails)

    def is_busy(self, key: str) -> bool:
        return key in self._tails

    async def join(self) -> None:
        """Wait until every unit enqueued so far has finished."""
        while pending := [task for task in self._tails.values() if not task.done()]:
            await asyncio.wait(pending)

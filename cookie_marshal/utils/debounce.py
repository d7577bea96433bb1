"""Debounced persistence writes.

Outcome recording happens on every processed banner, but the
storage collaborator only needs the latest state.  The debouncer
collapses bursts of writes for the same key into one write that
fires after a quiet period, and ``flush`` forces every pending
write out on session teardown.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from cookie_marshal.utils import errors, logger

log = logger.create_logger("Debounce")

WriteFactory = Callable[[], Awaitable[None]]


class Debouncer:
    """Per-key trailing-edge debouncer running on the current event loop."""

    def __init__(self, delay: float) -> None:
        self._delay = delay
        self._pending: dict[str, WriteFactory] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    def schedule(self, key: str, write: WriteFactory) -> None:
        """Schedule *write* for *key*, replacing any pending write."""
        self._pending[key] = write
        task = self._tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
        self._tasks[key] = asyncio.get_running_loop().create_task(self._fire_later(key))

    async def _fire_later(self, key: str) -> None:
        await asyncio.sleep(self._delay)
        self._tasks.pop(key, None)
        await self._run(key)

    async def _run(self, key: str) -> None:
        write = self._pending.pop(key, None)
        if write is None:
            return
        try:
            await write()
        except Exception as exc:
            log.warn("Debounced write failed", {"key": key, "error": errors.get_error_message(exc)})

    async def flush(self) -> None:
        """Run every pending write immediately."""
        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks.clear()
        for key in list(self._pending):
            await self._run(key)

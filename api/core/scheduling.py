"""
Delayed-task scheduling.

The connection manager never touches timers directly; it asks a `Scheduler`
to run a coroutine function later. Production uses the asyncio event loop,
tests pass a fake that records requests and runs them on demand.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class ScheduledTask(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: AsyncCallback) -> ScheduledTask: ...


class _LoopTask:
    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()


class AsyncioScheduler:
    """
    Runs callbacks on the running event loop after a delay.

    Exceptions raised by a callback are logged, never propagated.
    """

    def call_later(self, delay_s: float, callback: AsyncCallback) -> ScheduledTask:
        loop = asyncio.get_running_loop()
        entry = _LoopTask()
        entry._handle = loop.call_later(max(delay_s, 0.0), self._fire, entry, callback)
        return entry

    def _fire(self, entry: _LoopTask, callback: AsyncCallback) -> None:
        if entry.cancelled:
            return
        entry._task = asyncio.ensure_future(self._run(callback))

    async def _run(self, callback: AsyncCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scheduled_task_failed callback=%r", callback)

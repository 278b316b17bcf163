from __future__ import annotations

import asyncio

from core.scheduling import AsyncioScheduler


def test_callback_runs_after_delay() -> None:
    calls: list[str] = []

    async def callback() -> None:
        calls.append("ran")

    async def scenario() -> None:
        scheduler = AsyncioScheduler()
        scheduler.call_later(0.01, callback)
        assert calls == []
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert calls == ["ran"]


def test_cancelled_callback_never_runs() -> None:
    calls: list[str] = []

    async def callback() -> None:
        calls.append("ran")

    async def scenario() -> None:
        scheduler = AsyncioScheduler()
        task = scheduler.call_later(0.01, callback)
        task.cancel()
        scheduler.call_later(0.01, callback).cancel()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert calls == []


def test_failing_callback_is_logged_not_raised(caplog) -> None:
    async def callback() -> None:
        raise RuntimeError("boom")

    async def scenario() -> None:
        scheduler = AsyncioScheduler()
        scheduler.call_later(0, callback)
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert "scheduled_task_failed" in caplog.text

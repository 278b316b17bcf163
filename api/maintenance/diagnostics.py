"""
Connectivity probes behind the debug endpoints.
"""

from __future__ import annotations

import asyncio
import socket
import time
from typing import Any

from core.db import ConnectionManager


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


async def probe_database(manager: ConnectionManager) -> dict[str, Any]:
    status = manager.status()
    result: dict[str, Any] = {
        "state": status.state.value,
        "databaseAvailable": status.available,
        "attempts": status.attempts,
        "maxAttempts": status.max_attempts,
        "lastError": status.last_error,
        "dsn": manager.settings.redacted_dsn(),
    }
    if not status.available:
        result["ping"] = {"ok": False, "error": "database unavailable"}
        return result

    started = time.perf_counter()
    try:
        await manager.ping()
    except Exception as e:
        result["ping"] = {"ok": False, "elapsedMs": _elapsed_ms(started), "error": f"{e.__class__.__name__}: {e}"}
    else:
        result["ping"] = {"ok": True, "elapsedMs": _elapsed_ms(started)}
    return result


async def probe_network(host: str, port: int, *, timeout_s: float) -> dict[str, Any]:
    """
    Resolve `host` and open (then close) a TCP connection to it.
    """
    result: dict[str, Any] = {"host": host, "port": port}
    loop = asyncio.get_running_loop()

    started = time.perf_counter()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, port, type=socket.SOCK_STREAM),
            timeout=timeout_s,
        )
    except (OSError, asyncio.TimeoutError) as e:
        result["dns"] = {"ok": False, "elapsedMs": _elapsed_ms(started), "error": f"{e.__class__.__name__}: {e}"}
        return result
    result["dns"] = {
        "ok": True,
        "elapsedMs": _elapsed_ms(started),
        "addresses": sorted({info[4][0] for info in infos}),
    }

    started = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout_s)
    except (OSError, asyncio.TimeoutError) as e:
        result["tcp"] = {"ok": False, "elapsedMs": _elapsed_ms(started), "error": f"{e.__class__.__name__}: {e}"}
        return result
    result["tcp"] = {"ok": True, "elapsedMs": _elapsed_ms(started)}
    writer.close()
    await writer.wait_closed()
    return result

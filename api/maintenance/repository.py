"""
Retention and statistics SQL.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import asyncpg

from core.db import ConnectionManager, command_row_count


async def delete_created_before(conn: asyncpg.Connection, cutoff: datetime) -> int:
    command_status = await conn.execute(
        "DELETE FROM certificates WHERE created_at < $1",
        cutoff,
    )
    return command_row_count(command_status)


async def record_stats(manager: ConnectionManager, *, cutoff: datetime) -> dict[str, Any]:
    row = await manager.fetch_one(
        """
        SELECT
          count(*) AS total,
          count(*) FILTER (WHERE created_at < $1) AS expired,
          count(DISTINCT (name, id_number)) AS holders,
          min(created_at) AS oldest,
          max(created_at) AS newest
        FROM certificates
        """,
        cutoff,
    )
    return row or {}

"""
Certificate lookup SQL.
"""

from __future__ import annotations

from typing import Any

import asyncpg


async def find_by_number(conn: asyncpg.Connection, key: str) -> list[dict[str, Any]]:
    """
    Rows whose id_number or cert_number equals `key`, oldest first.

    Insertion order drives the order of certificate numbers in lookup results.
    """
    rows = await conn.fetch(
        """
        SELECT id, name, gender, id_type, id_number, cert_number, created_at
        FROM certificates
        WHERE id_number = $1
           OR cert_number = $1
        ORDER BY id
        """,
        key,
    )
    return [dict(r) for r in rows]

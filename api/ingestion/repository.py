"""
Import persistence.

Batches go in as one `INSERT ... SELECT FROM unnest(...)` statement each; the
caller owns the connection and the surrounding transaction.
"""

from __future__ import annotations

from collections.abc import Sequence

import asyncpg

from core.db import command_row_count

from .validation import CertificateRow

INSERT_BATCH_SQL = """
INSERT INTO certificates (name, gender, id_type, id_number, cert_number)
SELECT *
FROM unnest($1::varchar[], $2::varchar[], $3::varchar[], $4::varchar[], $5::varchar[])
ON CONFLICT (id_number, cert_number) DO NOTHING
"""


async def insert_batch(conn: asyncpg.Connection, batch: Sequence[CertificateRow]) -> int:
    """
    Insert a batch, skipping rows whose (id_number, cert_number) already exists.

    Returns the number of rows actually inserted.
    """
    if not batch:
        return 0

    columns = [list(column) for column in zip(*(row.as_tuple() for row in batch))]
    command_status = await conn.execute(INSERT_BATCH_SQL, *columns)
    return command_row_count(command_status)

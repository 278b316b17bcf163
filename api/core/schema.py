"""
Certificate table DDL.

Every statement is idempotent so `ensure_schema` runs on each startup and
each time the pool is rebuilt.
"""

from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger(__name__)

TABLE_NAME = "certificates"

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS certificates (
      id bigserial PRIMARY KEY,
      name varchar(50) NOT NULL,
      gender varchar(10) NOT NULL,
      id_type varchar(20) NOT NULL,
      id_number varchar(50) NOT NULL,
      cert_number varchar(50) NOT NULL,
      created_at timestamptz NOT NULL DEFAULT now(),
      CONSTRAINT uq_certificates_id_cert UNIQUE (id_number, cert_number)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_certificates_id_number ON certificates (id_number)",
    "CREATE INDEX IF NOT EXISTS idx_certificates_cert_number ON certificates (cert_number)",
    "CREATE INDEX IF NOT EXISTS idx_certificates_created_at ON certificates (created_at)",
)


async def ensure_schema(conn: asyncpg.Connection) -> None:
    for statement in SCHEMA_STATEMENTS:
        await conn.execute(statement)
    logger.info("schema_ready table=%s", TABLE_NAME)

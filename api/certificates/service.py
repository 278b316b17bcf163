"""
Certificate lookup service.

Rows come back one per (id_number, cert_number). Callers see one record per
holder (name + id_number) carrying all of that holder's certificate numbers.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from core.db import ConnectionManager, DatabaseUnavailableError

from . import repository

logger = logging.getLogger(__name__)


@dataclass
class AggregatedRecord:
    name: str
    gender: str
    id_type: str
    id_number: str
    cert_numbers: list[str] = field(default_factory=list)


class LookupStatus(str, enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class LookupResult:
    status: LookupStatus
    records: list[AggregatedRecord] = field(default_factory=list)


def aggregate_rows(rows: Iterable[Mapping[str, Any]]) -> list[AggregatedRecord]:
    """
    Merge rows sharing (name, id_number), keeping certificate numbers unique
    and in first-seen order. Holders are returned in first-seen order too.
    """
    grouped: dict[tuple[str, str], AggregatedRecord] = {}
    seen: dict[tuple[str, str], set[str]] = {}

    for row in rows:
        key = (str(row["name"]), str(row["id_number"]))
        cert_number = str(row["cert_number"])

        record = grouped.get(key)
        if record is None:
            grouped[key] = AggregatedRecord(
                name=key[0],
                gender=str(row["gender"]),
                id_type=str(row["id_type"]),
                id_number=key[1],
                cert_numbers=[cert_number],
            )
            seen[key] = {cert_number}
            continue

        if cert_number not in seen[key]:
            seen[key].add(cert_number)
            record.cert_numbers.append(cert_number)

    return list(grouped.values())


async def lookup(manager: ConnectionManager, key: str) -> LookupResult:
    key = (key or "").strip()

    if not manager.is_available:
        return LookupResult(status=LookupStatus.UNAVAILABLE)

    try:
        async with manager.acquire() as conn:
            rows = await repository.find_by_number(conn, key)
    except DatabaseUnavailableError:
        return LookupResult(status=LookupStatus.UNAVAILABLE)

    records = aggregate_rows(rows)
    if not records:
        return LookupResult(status=LookupStatus.NOT_FOUND)

    logger.debug("lookup_found key_len=%s holders=%s rows=%s", len(key), len(records), len(rows))
    return LookupResult(status=LookupStatus.FOUND, records=records)

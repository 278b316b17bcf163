"""
Row validation for bulk imports.

Everything here runs before the database is touched. Problems are collected
across all rows so the uploader can fix the whole file in one pass.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

REQUIRED_FIELDS: tuple[str, ...] = ("name", "gender", "id_type", "id_number", "cert_number")

# Names shown to users; match the JSON keys of lookup results.
FIELD_LABELS: dict[str, str] = {
    "name": "name",
    "gender": "gender",
    "id_type": "idType",
    "id_number": "idNumber",
    "cert_number": "certNumber",
}

# Column widths of the certificates table.
FIELD_MAX_LENGTHS: dict[str, int] = {
    "name": 50,
    "gender": 10,
    "id_type": 20,
    "id_number": 50,
    "cert_number": 50,
}

MAX_REPORTED_PROBLEMS = 10


@dataclass(frozen=True)
class CertificateRow:
    name: str
    gender: str
    id_type: str
    id_number: str
    cert_number: str

    def as_tuple(self) -> tuple[str, str, str, str, str]:
        return (self.name, self.gender, self.id_type, self.id_number, self.cert_number)


class RowValidationError(ValueError):
    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _labels(fields: Sequence[str]) -> str:
    return ", ".join(FIELD_LABELS.get(f, f) for f in fields)


def format_problems(problems: Sequence[str], *, limit: int = MAX_REPORTED_PROBLEMS) -> str:
    shown = "; ".join(problems[:limit])
    message = f"{len(problems)} row(s) failed validation: {shown}"
    hidden = len(problems) - limit
    if hidden > 0:
        message += f"; ... and {hidden} more"
    return message


def validate_rows(rows: Sequence[Mapping[str, Any]]) -> list[CertificateRow]:
    """
    Check raw rows and convert them to `CertificateRow`s.

    Raises `RowValidationError` for an empty input, missing columns, or any
    row with blank (or over-long) required values. Row numbers are 1-based.
    """
    if not rows:
        raise RowValidationError("The file contains no data rows.")

    missing = [f for f in REQUIRED_FIELDS if f not in rows[0]]
    if missing:
        raise RowValidationError(
            f"Missing required columns: {_labels(missing)}.",
            problems=[f"missing column {FIELD_LABELS[f]}" for f in missing],
        )

    problems: list[str] = []
    records: list[CertificateRow] = []

    for index, row in enumerate(rows, start=1):
        values = {f: _text(row.get(f)) for f in REQUIRED_FIELDS}

        blank = [f for f in REQUIRED_FIELDS if not values[f]]
        if blank:
            problems.append(f"row {index}: empty {_labels(blank)}")
            continue

        too_long = [f for f in REQUIRED_FIELDS if len(values[f]) > FIELD_MAX_LENGTHS[f]]
        if too_long:
            problems.append(f"row {index}: too long {_labels(too_long)}")
            continue

        records.append(CertificateRow(**values))

    if problems:
        raise RowValidationError(format_problems(problems), problems=problems)

    return records

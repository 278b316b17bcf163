"""
Spreadsheet reading.

Turns the first worksheet of an `.xlsx` workbook (or a `.csv` file) into a
list of raw rows keyed by canonical field name. The header row may use the
Chinese column titles of the registry templates or English spellings.
"""

from __future__ import annotations

import csv
import re
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any

import openpyxl

RawRow = dict[str, str]

# Normalized header text (see `normalize_header`) -> canonical field name.
HEADER_ALIASES: dict[str, str] = {
    "姓名": "name",
    "name": "name",
    "fullname": "name",
    "性别": "gender",
    "gender": "gender",
    "sex": "gender",
    "证件类型": "id_type",
    "idtype": "id_type",
    "documenttype": "id_type",
    "证件号": "id_number",
    "证件号码": "id_number",
    "idnumber": "id_number",
    "idno": "id_number",
    "证书编号": "cert_number",
    "证书号": "cert_number",
    "certnumber": "cert_number",
    "certno": "cert_number",
    "certificatenumber": "cert_number",
}

_HEADER_NOISE_RE = re.compile(r"[\s_\-]+")


class SpreadsheetError(ValueError):
    pass


def normalize_header(raw: str) -> str:
    """
    Map a header cell to its canonical field name; unknown headers pass through.
    """
    text = (raw or "").strip()
    key = _HEADER_NOISE_RE.sub("", text).lower()
    return HEADER_ALIASES.get(key, text)


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    # Excel stores ID numbers typed as numbers as floats.
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def rows_from_table(table: Iterable[Sequence[Any]]) -> list[RawRow]:
    """
    First non-empty row is the header; fully blank rows are skipped.
    """
    header: list[str] | None = None
    rows: list[RawRow] = []

    for values in table:
        texts = [cell_text(v) for v in values]
        if not any(texts):
            continue

        if header is None:
            header = [normalize_header(t) for t in texts]
            continue

        row: RawRow = {}
        for idx, name in enumerate(header):
            if not name:
                continue
            row[name] = texts[idx] if idx < len(texts) else ""
        rows.append(row)

    return rows


def read_xlsx(path: Path) -> list[RawRow]:
    try:
        workbook = openpyxl.load_workbook(str(path), read_only=True, data_only=True)
    except Exception as e:
        raise SpreadsheetError("Could not read workbook (file may be corrupted or not .xlsx).") from e

    try:
        if not workbook.worksheets:
            return []
        sheet = workbook.worksheets[0]
        return rows_from_table(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()


def read_csv(path: Path) -> list[RawRow]:
    try:
        with path.open(newline="", encoding="utf-8-sig") as fh:
            return rows_from_table(csv.reader(fh))
    except UnicodeDecodeError as e:
        raise SpreadsheetError("CSV files must be UTF-8 encoded.") from e
    except csv.Error as e:
        raise SpreadsheetError(f"Could not parse CSV: {e}") from e


READERS: dict[str, Callable[[Path], list[RawRow]]] = {
    ".xlsx": read_xlsx,
    ".csv": read_csv,
}


def read_rows(path: Path) -> list[RawRow]:
    reader = READERS.get(path.suffix.lower())
    if reader is None:
        raise SpreadsheetError(f"Unsupported file type '{path.suffix}'. Allowed: {sorted(READERS)}")
    return reader(path)

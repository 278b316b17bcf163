from __future__ import annotations

from pathlib import Path

import openpyxl
import pytest

from ingestion.spreadsheet import SpreadsheetError, cell_text, normalize_header, read_rows, rows_from_table


def _write_xlsx(path: Path, rows: list[list[object]]) -> Path:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    workbook.save(path)
    return path


def test_chinese_and_english_headers_map_to_fields() -> None:
    assert normalize_header("姓名") == "name"
    assert normalize_header(" 证件类型 ") == "id_type"
    assert normalize_header("idType") == "id_type"
    assert normalize_header("ID Number") == "id_number"
    assert normalize_header("cert_number") == "cert_number"
    assert normalize_header("Remarks") == "Remarks"


def test_cell_text_renders_excel_numbers_without_decimal() -> None:
    assert cell_text(None) == ""
    assert cell_text(110101199001011234.0) == "110101199001011234"
    assert cell_text(12.5) == "12.5"
    assert cell_text("  A  ") == "A"


def test_rows_from_table_skips_blank_rows_and_pads_short_rows() -> None:
    table = [
        (None, None),
        ("姓名", "性别", "证件类型", "证件号", "证书编号"),
        ("A", "F", "ID", 111, "C1"),
        (None, None, None, None, None),
        ("B", "M"),
    ]

    rows = rows_from_table(table)

    assert rows == [
        {"name": "A", "gender": "F", "id_type": "ID", "id_number": "111", "cert_number": "C1"},
        {"name": "B", "gender": "M", "id_type": "", "id_number": "", "cert_number": ""},
    ]


def test_read_xlsx_uses_first_worksheet(tmp_path: Path) -> None:
    path = _write_xlsx(
        tmp_path / "certs.xlsx",
        [
            ["姓名", "性别", "证件类型", "证件号", "证书编号"],
            ["张三", "男", "身份证", 110101199001011234, "ZS-001"],
        ],
    )

    rows = read_rows(path)

    assert rows == [
        {"name": "张三", "gender": "男", "id_type": "身份证", "id_number": "110101199001011234", "cert_number": "ZS-001"}
    ]


def test_read_csv_with_bom(tmp_path: Path) -> None:
    path = tmp_path / "certs.csv"
    path.write_text("\ufeffname,gender,idType,idNumber,certNumber\nA,F,ID,111,C1\n", encoding="utf-8")

    assert read_rows(path) == [
        {"name": "A", "gender": "F", "id_type": "ID", "id_number": "111", "cert_number": "C1"}
    ]


def test_corrupt_workbook_raises(tmp_path: Path) -> None:
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip file")

    with pytest.raises(SpreadsheetError, match="Could not read workbook"):
        read_rows(path)


def test_unsupported_extension_raises(tmp_path: Path) -> None:
    path = tmp_path / "certs.txt"
    path.write_text("x", encoding="utf-8")

    with pytest.raises(SpreadsheetError, match="Unsupported file type"):
        read_rows(path)

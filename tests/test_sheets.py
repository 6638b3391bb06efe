from __future__ import annotations

from datetime import datetime

import pytest
from openpyxl import Workbook

from mediagate.core.errors import UnsupportedFormat
from mediagate.media.sheets import parse_workbook


def _workbook(path):
    workbook = Workbook()
    first = workbook.active
    first.title = "Budget"
    first.append(["item", "amount", "note"])
    first.append(["rent", 1200])
    first.append([None, 3.5, "misc"])
    first["A5"] = datetime(2024, 1, 2, 9, 30)
    second = workbook.create_sheet("Empty")
    assert second.title == "Empty"
    workbook.save(path)
    return path


def test_rows_are_rectangular_and_json_safe(tmp_path):
    sheets = parse_workbook(_workbook(tmp_path / "book.xlsx"))

    assert [sheet.name for sheet in sheets] == ["Budget", "Empty"]
    rows = sheets[0].rows
    assert rows[0] == ["item", "amount", "note"]
    assert rows[1] == ["rent", 1200, ""]
    assert rows[2] == ["", 3.5, "misc"]
    assert rows[4][0] == "2024-01-02T09:30:00"
    assert {len(row) for row in rows} == {3}


def test_empty_sheet_has_no_rows(tmp_path):
    sheets = parse_workbook(_workbook(tmp_path / "book.xlsx"))
    assert sheets[1].rows == []


@pytest.mark.parametrize("name", ["old.xls", "binary.xlsb"])
def test_legacy_formats_ask_for_resave(tmp_path, name):
    path = tmp_path / name
    path.write_bytes(b"\xd0\xcf\x11\xe0")
    with pytest.raises(UnsupportedFormat) as excinfo:
        parse_workbook(path)
    assert ".xlsx" in excinfo.value.remediation


def test_non_workbook_extension_is_rejected(tmp_path):
    path = tmp_path / "notes.csv"
    path.write_text("a,b")
    with pytest.raises(UnsupportedFormat):
        parse_workbook(path)

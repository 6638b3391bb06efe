from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, List

from openpyxl import load_workbook

from mediagate.core.errors import UnsupportedFormat

SHEET_EXTENSIONS = frozenset({".xlsx", ".xlsm", ".xltx", ".xltm"})
LEGACY_SHEET_EXTENSIONS = frozenset({".xls", ".xlsb"})


@dataclass(slots=True)
class Sheet:
    name: str
    rows: List[List[Any]] = field(default_factory=list)


def _cell_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _trim(rows: List[List[Any]]) -> List[List[Any]]:
    while rows and all(cell == "" for cell in rows[-1]):
        rows.pop()
    return rows


def parse_workbook(path: Path) -> List[Sheet]:
    """Read every worksheet as rectangular rows of JSON-safe values.

    Empty cells become ``""`` so every row has the width of the widest one.
    """
    extension = path.suffix.lower()
    if extension in LEGACY_SHEET_EXTENSIONS:
        raise UnsupportedFormat(
            f"{extension} workbooks are not supported",
            remediation="Re-save the workbook as .xlsx to preview it.",
        )
    if extension not in SHEET_EXTENSIONS:
        raise UnsupportedFormat("Invalid file type")

    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        sheets: List[Sheet] = []
        for worksheet in workbook.worksheets:
            rows = [[_cell_value(value) for value in row] for row in worksheet.iter_rows(values_only=True)]
            rows = _trim(rows)
            width = max((len(row) for row in rows), default=0)
            for row in rows:
                row.extend([""] * (width - len(row)))
            sheets.append(Sheet(name=worksheet.title, rows=rows))
        return sheets
    finally:
        workbook.close()


__all__ = ["Sheet", "SHEET_EXTENSIONS", "LEGACY_SHEET_EXTENSIONS", "parse_workbook"]

# travel_ledger/services/workbook.py
"""
Thin layer over openpyxl: read a workbook from bytes, find sheets and columns
by name, and write simple header + rows sheets back out.
"""

from __future__ import annotations

import io
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from travel_ledger.normalize import cell_to_string

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header text, column width)
Column = Tuple[str, int]


class WorkbookParseError(ValueError):
    """The upload is not a readable .xlsx workbook."""


def load_workbook_bytes(data: bytes) -> Workbook:
    if not data:
        raise WorkbookParseError("empty upload")
    try:
        # data_only: formulas come back as their cached values
        return load_workbook(io.BytesIO(data), data_only=True)
    except Exception as ex:  # openpyxl raises a zoo of types for bad files
        raise WorkbookParseError(str(ex)) from ex


def find_sheet(wb: Workbook, preferred_names: Iterable[str]) -> Optional[Worksheet]:
    """First sheet whose title matches one of the names, else the first sheet, else None."""
    for name in preferred_names:
        if name in wb.sheetnames:
            return wb[name]
    worksheets = wb.worksheets
    return worksheets[0] if worksheets else None


class HeaderIndex:
    """
    Column lookup for one sheet, keyed by field name instead of position.

    `synonyms` maps a field key to the header texts accepted for it, most
    preferred first. Header text is matched exactly after trimming.
    """

    def __init__(self, ws: Worksheet, synonyms: Mapping[str, Sequence[str]], header_row: int = 1):
        by_text: Dict[str, int] = {}
        for cell in ws[header_row] if ws.max_row >= header_row else ():
            text = cell_to_string(cell.value)
            if text:
                by_text[text] = cell.column
        self.columns: Dict[str, int] = {}
        for field, names in synonyms.items():
            for name in names:
                if name in by_text:
                    self.columns[field] = by_text[name]
                    break
        self._ws = ws

    def value(self, row: int, field: str) -> Any:
        column = self.columns.get(field)
        if column is None:
            return None
        return self._ws.cell(row=row, column=column).value

    def values(self, row: int) -> Dict[str, Any]:
        return {field: self.value(row, field) for field in self.columns}


def row_is_blank(ws: Worksheet, row: int) -> bool:
    """True when every cell in the row is empty or whitespace."""
    for values in ws.iter_rows(min_row=row, max_row=row, values_only=True):
        return all(cell_to_string(v) == "" for v in values)
    return True


def add_table_sheet(
    wb: Workbook,
    title: str,
    columns: Sequence[Column],
    rows: Iterable[Sequence[Any]],
) -> Worksheet:
    """Append a sheet with a frozen header row, fixed column widths and the given rows."""
    ws = wb.create_sheet(title=title)
    ws.append([header for header, _ in columns])
    for index, (_, width) in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width
    for row in rows:
        ws.append(list(row))
    ws.freeze_panes = "A2"
    return ws


def new_workbook() -> Workbook:
    wb = Workbook()
    wb.remove(wb.active)  # start without the default "Sheet"
    return wb


def workbook_bytes(wb: Workbook) -> bytes:
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()

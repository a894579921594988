"""
XLSX Export Module - reconciliation report workbooks.

Layout:
- Summary: totals and percentage complete
- Missing / Surplus / Matched: one sheet per bucket, header in row 1, data from row 2

Bucket sheets use the same columns as the CSV export (Kind, Code, then the
uploaded catalog's descriptive columns), so either file can be pasted back
next to the original spreadsheet.
"""

from datetime import datetime
from io import BytesIO
from typing import Any, List

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from tally.reconcile.report import (
    KIND_MATCHED,
    KIND_MISSING,
    KIND_SURPLUS,
    Report,
    ItemStatus,
    report_header,
)

# Header fills per bucket sheet
SHEET_FILLS = {
    KIND_MISSING: "F8CBAD",
    KIND_SURPLUS: "FFE699",
    KIND_MATCHED: "C6E0B4",
}


def _excel_value(value: Any) -> Any:
    """Cell values openpyxl can write; everything else as text, minus control characters."""
    if value is None or isinstance(value, (int, float, bool, datetime)):
        return value
    return ILLEGAL_CHARACTERS_RE.sub("", str(value))


def _item_row(kind: str, status: ItemStatus, columns: List[str]) -> List[Any]:
    attributes = status.item.attributes
    return [kind, _excel_value(status.code)] + [_excel_value(attributes.get(c)) for c in columns]


def _style_header(ws, kind: str) -> None:
    fill = PatternFill(start_color=SHEET_FILLS[kind], end_color=SHEET_FILLS[kind], fill_type="solid")
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = fill
    ws.freeze_panes = "A2"


def _size_columns(ws, count: int) -> None:
    for col_idx in range(1, count + 1):
        width = 12 if col_idx == 1 else 20
        ws.column_dimensions[get_column_letter(col_idx)].width = width


def create_report_workbook(report: Report, session_code: str = "") -> BytesIO:
    """
    Create the reconciliation workbook for a report.

    Args:
        report: Generated report
        session_code: Shown on the Summary sheet

    Returns:
        BytesIO buffer containing the Excel file
    """
    wb = Workbook()
    summary = wb.active
    summary.title = "Summary"

    s = report.summary
    summary.append(["Inventory Reconciliation"])
    summary["A1"].font = Font(bold=True, size=14)
    summary.append(["Session", session_code])
    summary.append(["Generated", datetime.now().strftime("%Y-%m-%d %H:%M")])
    summary.append([])
    summary.append(["Total items", s.total])
    summary.append(["Matched", s.matched])
    summary.append(["Missing", s.missing])
    summary.append(["Surplus", s.surplus])
    summary.append(["Complete (%)", s.percentage_complete])
    summary.column_dimensions["A"].width = 20
    summary.column_dimensions["B"].width = 20

    header = report_header(report)
    columns = report.catalog.descriptive_columns

    missing = wb.create_sheet("Missing")
    missing.append(header)
    for status in report.missing:
        missing.append(_item_row(KIND_MISSING, status, columns))

    surplus = wb.create_sheet("Surplus")
    surplus.append(header)
    for code in report.surplus:
        surplus.append([KIND_SURPLUS, _excel_value(code)] + [None] * len(columns))

    matched = wb.create_sheet("Matched")
    matched.append(header)
    for status in report.matched:
        matched.append(_item_row(KIND_MATCHED, status, columns))

    for ws, kind in ((missing, KIND_MISSING), (surplus, KIND_SURPLUS), (matched, KIND_MATCHED)):
        _style_header(ws, kind)
        _size_columns(ws, len(header))

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer

"""
Tests for the reconciliation workbook export.
"""
from openpyxl import load_workbook

from backend.core.xlsx_export import create_report_workbook
from tally.reconcile.catalog import build_catalog
from tally.reconcile.models import Ledger
from tally.reconcile.report import generate_report


def _report():
    catalog = build_catalog([
        {"Code": "A1", "Name": "Widget"},
        {"Code": "B2", "Name": "Gadget"},
    ])
    return generate_report(catalog, Ledger.from_list(["A1", "C3"]))


class TestReportWorkbook:
    def test_sheets(self):
        wb = load_workbook(create_report_workbook(_report(), session_code="K7M2QX"))
        assert wb.sheetnames == ["Summary", "Missing", "Surplus", "Matched"]

    def test_summary(self):
        ws = load_workbook(create_report_workbook(_report(), session_code="K7M2QX"))["Summary"]
        values = {row[0]: row[1] for row in ws.iter_rows(values_only=True) if row and row[0]}
        assert values["Session"] == "K7M2QX"
        assert values["Total items"] == 2
        assert values["Complete (%)"] == 50

    def test_bucket_rows_match_csv_columns(self):
        wb = load_workbook(create_report_workbook(_report()))
        missing = list(wb["Missing"].iter_rows(values_only=True))
        assert missing[0] == ("Kind", "Code", "Name")
        assert missing[1] == ("MISSING", "B2", "Gadget")

        surplus = list(wb["Surplus"].iter_rows(values_only=True))
        assert surplus[1][:2] == ("SURPLUS", "C3")

        matched = wb["Matched"]
        assert matched["C2"].value == "Widget"
        assert matched.freeze_panes == "A2"

    def test_control_characters_stripped_from_codes(self):
        catalog = build_catalog([{"Code": "01\x1d21AB", "Name": "Lot\x07 7"}])
        report = generate_report(catalog, Ledger.from_list(["01\x1d21AB", "99\x1d10CD"]))
        wb = load_workbook(create_report_workbook(report))
        assert wb["Matched"]["B2"].value == "0121AB"
        assert wb["Matched"]["C2"].value == "Lot 7"
        assert wb["Surplus"]["B2"].value == "9910CD"

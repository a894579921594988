"""
Report Generator - three-way diff between the catalog and the ledger.

Buckets:
- matched: catalog items whose quota is met
- missing: catalog items still short (never scanned included)
- surplus: distinct scanned codes that match no catalog item

Produces console output and CSV export; the CSV is the exchange format handed
back to the spreadsheet the catalog came from.
"""

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, TextIO

from .models import Catalog, Item, Ledger, ScanMode

KIND_MATCHED = "MATCHED"
KIND_MISSING = "MISSING"
KIND_SURPLUS = "SURPLUS"

# Row order in exports
KIND_ORDER = (KIND_MISSING, KIND_SURPLUS, KIND_MATCHED)


@dataclass
class ReportSummary:
    total: int = 0
    matched: int = 0
    missing: int = 0
    surplus: int = 0
    percentage_complete: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "matched": self.matched,
            "missing": self.missing,
            "surplus": self.surplus,
            "percentageComplete": self.percentage_complete,
        }


@dataclass
class ItemStatus:
    """A catalog item with the scans allocated to it."""
    item: Item
    scanned: int = 0

    @property
    def code(self) -> Optional[str]:
        return self.item.code


@dataclass
class Report:
    catalog: Catalog
    matched: list[ItemStatus] = field(default_factory=list)
    missing: list[ItemStatus] = field(default_factory=list)
    surplus: list[str] = field(default_factory=list)
    surplus_counts: dict[str, int] = field(default_factory=dict)
    summary: ReportSummary = field(default_factory=ReportSummary)

    def rows(self) -> list[tuple[str, Optional[str]]]:
        """(Kind, Code) pairs in export order."""
        pairs = [(KIND_MISSING, s.code) for s in self.missing]
        pairs += [(KIND_SURPLUS, code) for code in self.surplus]
        pairs += [(KIND_MATCHED, s.code) for s in self.matched]
        return pairs

    def to_dict(self) -> dict:
        def item_row(status: ItemStatus) -> dict:
            return {
                "code": status.code,
                "requiredQuantity": status.item.required_quantity,
                "scanned": status.scanned,
                "attributes": dict(status.item.attributes),
            }

        return {
            "matched": [item_row(s) for s in self.matched],
            "missing": [item_row(s) for s in self.missing],
            "surplus": [{"code": c, "scanned": self.surplus_counts.get(c, 0)} for c in self.surplus],
            "summary": self.summary.to_dict(),
        }


def percentage(part: int, whole: int) -> int:
    """round(100 * part / whole), half-up; 0 when whole is 0."""
    if whole <= 0:
        return 0
    value = Decimal(100 * part) / Decimal(whole)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def allocate(catalog: Catalog, ledger: Ledger, mode: ScanMode) -> list[ItemStatus]:
    """
    Spread the ledger's scans over catalog items.

    Set mode: every item whose code was scanned at least once is satisfied.
    Multiset mode: scans of a code are handed to items sharing that code in
    catalog order, each taking up to its own quota.
    """
    counts = ledger.counts()
    remaining = dict(counts)
    statuses = []

    for item in catalog.items:
        if item.code is None:
            statuses.append(ItemStatus(item=item, scanned=0))
            continue
        if mode == ScanMode.SET:
            statuses.append(ItemStatus(item=item, scanned=min(1, counts.get(item.code, 0))))
            continue
        available = remaining.get(item.code, 0)
        taken = min(available, item.quota)
        remaining[item.code] = available - taken
        statuses.append(ItemStatus(item=item, scanned=taken))

    return statuses


def _is_satisfied(status: ItemStatus, mode: ScanMode) -> bool:
    if mode == ScanMode.SET:
        return status.scanned >= 1
    return status.scanned >= status.item.quota


def generate_report(catalog: Catalog, ledger: Ledger, mode: ScanMode = ScanMode.SET) -> Report:
    """
    Build the three-way diff.

    Every catalog item lands in exactly one of matched/missing.

    Args:
        catalog: Expected items
        ledger: Accepted scans
        mode: Scan mode the ledger was built under

    Returns:
        Report with buckets and summary counts
    """
    report = Report(catalog=catalog)

    for status in allocate(catalog, ledger, mode):
        if _is_satisfied(status, mode):
            report.matched.append(status)
        else:
            report.missing.append(status)

    counts = ledger.counts()
    report.surplus = [code for code in ledger.distinct() if not catalog.contains(code)]
    report.surplus_counts = {code: counts[code] for code in report.surplus}

    total = len(catalog.items)
    report.summary = ReportSummary(
        total=total,
        matched=len(report.matched),
        missing=len(report.missing),
        surplus=len(report.surplus),
        percentage_complete=percentage(len(report.matched), total),
    )
    return report


def progress_percentage(catalog: Catalog, ledger: Ledger, mode: ScanMode = ScanMode.SET) -> int:
    """Percentage of catalog items whose quota is met."""
    if not catalog.items:
        return 0
    statuses = allocate(catalog, ledger, mode)
    done = sum(1 for s in statuses if _is_satisfied(s, mode))
    return percentage(done, len(catalog.items))


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def report_header(report: Report) -> list[str]:
    """Kind, Code, then every descriptive column of the uploaded catalog."""
    return ["Kind", "Code"] + report.catalog.descriptive_columns


def export_csv(report: Report, output: TextIO | None = None) -> str:
    """
    Export the report to CSV.

    One row per missing item, surplus code and matched item (in that order).
    Matched/missing rows echo the catalog row's descriptive columns; surplus
    rows leave them empty.

    Args:
        report: Report to export
        output: Optional file handle to write to

    Returns:
        CSV string (also writes to output if provided)
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    columns = report.catalog.descriptive_columns

    writer.writerow(report_header(report))

    for status in report.missing:
        writer.writerow([KIND_MISSING, _cell(status.code)] + [_cell(status.item.attributes.get(c)) for c in columns])
    for code in report.surplus:
        writer.writerow([KIND_SURPLUS, code] + [""] * len(columns))
    for status in report.matched:
        writer.writerow([KIND_MATCHED, _cell(status.code)] + [_cell(status.item.attributes.get(c)) for c in columns])

    csv_content = buffer.getvalue()
    if output is not None:
        output.write(csv_content)
    return csv_content


def parse_report_csv(text: str) -> list[dict[str, str]]:
    """Read an exported report back into row dicts keyed by header."""
    reader = csv.DictReader(io.StringIO(text))
    return [dict(row) for row in reader]


def report_filename(on: Optional[date] = None, extension: str = "csv") -> str:
    """Download name, e.g. inventory_report_2026-10-19.csv"""
    day = on or date.today()
    return f"inventory_report_{day.isoformat()}.{extension}"


def format_console(report: Report) -> str:
    """Plain-text summary for terminals and logs."""
    s = report.summary
    lines = [
        "=" * 60,
        "INVENTORY RECONCILIATION",
        "=" * 60,
        f"  Total items: {s.total}",
        f"  Matched:     {s.matched}",
        f"  Missing:     {s.missing}",
        f"  Surplus:     {s.surplus}",
        f"  Complete:    {s.percentage_complete}%",
    ]

    if report.missing:
        lines.append(f"\nMISSING ({len(report.missing)})")
        lines.append("-" * 60)
        for status in report.missing:
            needed = f"{status.scanned}/{status.item.quota}"
            lines.append(f"{(status.code or '<no code>'):<30} {needed:>8}")

    if report.surplus:
        lines.append(f"\nSURPLUS ({len(report.surplus)})")
        lines.append("-" * 60)
        for code in report.surplus:
            lines.append(code)

    return "\n".join(lines)

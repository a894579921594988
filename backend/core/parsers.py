"""
Spreadsheet parsing for catalog uploads.

Turns an uploaded file into row records (header -> cell value) for the catalog
builder. The first non-empty row of the sheet is the header row; rows below it
become records, keyed by header, in sheet order.

Supported formats:
- Excel (.xlsx, .xlsm)
- CSV (.csv, .txt)
"""
import csv
import io
import logging
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from openpyxl import load_workbook

from tally.reconcile.errors import InvalidInput

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}
CSV_EXTENSIONS = {".csv", ".txt"}


# =============================================================================
# Utility Functions
# =============================================================================

def _header_name(value: Any, index: int) -> str:
    """Header text for a cell; blank headers get a positional name."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return f"Column {index + 1}"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _unique_headers(raw: List[Any]) -> List[str]:
    """Disambiguate repeated headers ("Code", "Code_2", ...)."""
    headers = []
    seen: Dict[str, int] = {}
    for i, value in enumerate(raw):
        name = _header_name(value, i)
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        headers.append(name)
    return headers


def _records(grid: List[List[Any]]) -> Dict[str, Any]:
    """Header row + records from a grid of cell values."""
    rows = [list(r) for r in grid if any(c is not None and str(c).strip() != "" for c in r)]
    if not rows:
        return {"headers": [], "rows": []}

    headers = _unique_headers(rows[0])
    records = []
    for row in rows[1:]:
        record = {}
        for i, header in enumerate(headers):
            value = row[i] if i < len(row) else None
            if isinstance(value, str):
                value = value.strip()
                if value == "":
                    value = None
            record[header] = value
        records.append(record)

    return {"headers": headers, "rows": records}


# =============================================================================
# Parsers
# =============================================================================

def parse_excel_bytes(content: bytes, sheet_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Parse an Excel workbook held in memory.

    Args:
        content: Raw .xlsx bytes
        sheet_name: Sheet to read (the first sheet if None)

    Returns:
        dict with 'headers', 'rows', 'metadata'

    Raises:
        InvalidInput: not a readable workbook, or the sheet does not exist
    """
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (zipfile.BadZipFile, KeyError, OSError) as e:
        raise InvalidInput(f"Invalid Excel file: {e}")

    try:
        if sheet_name is not None and sheet_name not in wb.sheetnames:
            raise InvalidInput(f"Sheet '{sheet_name}' not found")
        ws = wb[sheet_name] if sheet_name else wb[wb.sheetnames[0]]
        grid = [list(row) for row in ws.iter_rows(values_only=True)]
        result = _records(grid)
        result["metadata"] = {
            "file_type": "excel",
            "sheet_name": ws.title,
            "row_count": len(result["rows"]),
            "column_count": len(result["headers"]),
        }
    finally:
        wb.close()

    return result


def parse_csv_text(text: str) -> Dict[str, Any]:
    """
    Parse CSV text, sniffing the delimiter (spreadsheets exported with
    a European locale use semicolons).

    Returns:
        dict with 'headers', 'rows', 'metadata'
    """
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel

    grid = [row for row in csv.reader(io.StringIO(text), dialect=dialect)]
    result = _records(grid)
    result["metadata"] = {
        "file_type": "csv",
        "row_count": len(result["rows"]),
        "column_count": len(result["headers"]),
    }
    return result


def _decode(content: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise InvalidInput("CSV file is not valid UTF-8 or Windows-1252 text")


def parse_upload(filename: str, content: bytes) -> Dict[str, Any]:
    """
    Parse an uploaded spreadsheet by extension.

    Raises:
        InvalidInput: unsupported extension or unreadable content
    """
    ext = Path(filename or "").suffix.lower()
    if ext in EXCEL_EXTENSIONS:
        result = parse_excel_bytes(content)
    elif ext in CSV_EXTENSIONS:
        result = parse_csv_text(_decode(content))
    else:
        raise InvalidInput(f"Unsupported file type: {ext or 'none'} (expected .xlsx or .csv)")

    result["metadata"]["filename"] = filename
    logger.info(f"Parsed {filename}: {result['metadata']['row_count']} rows")
    return result


def parse_file(file_path: Union[str, Path]) -> Dict[str, Any]:
    """Parse a spreadsheet on disk (used by scripts and tests)."""
    p = Path(file_path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    return parse_upload(p.name, p.read_bytes())

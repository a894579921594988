"""
Catalog builder - turns spreadsheet row records into a typed Catalog.

Rows come from an external tabular parser as mappings of header -> cell value.
Cells may be missing for some rows (sparse sheets), so the column list is the
union of headers in first-seen order.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from .config import Config, load_config
from .errors import InvalidInput
from .models import Catalog, Item, ScanMode

logger = logging.getLogger(__name__)

_default_config: Optional[Config] = None


def get_default_config() -> Config:
    """Packaged column config, loaded once."""
    global _default_config
    if _default_config is None:
        _default_config = load_config()
    return _default_config


def canonical_code(value: Any) -> Optional[str]:
    """
    Canonical string form of a code cell or scanned text.

    Numeric cells compare equal to their text form: 12345, 12345.0 and
    " 12345 " all become "12345". Blank values become None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value != value:  # NaN from pandas-style exports
            return None
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(value.quantize(Decimal(1)))
        return str(value.normalize())
    text = str(value).strip()
    return text or None


def parse_quantity(value: Any) -> Optional[int]:
    """
    Parse a required-quantity cell.

    Returns None for blanks and anything that is not a non-negative whole number.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return None
    if number < 0 or number != number.to_integral_value():
        return None
    return int(number)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def collect_columns(rows: Iterable[Mapping[str, Any]]) -> list[str]:
    """Union of row headers in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row.keys():
            if isinstance(key, str) and key not in seen:
                seen[key] = None
    return list(seen)


def build_catalog(
    rows: Iterable[Mapping[str, Any]],
    code_column: Optional[str] = None,
    quantity_column: Optional[str] = None,
    config: Optional[Config] = None,
) -> Catalog:
    """
    Build a Catalog from parsed spreadsheet rows.

    Args:
        rows: Row records (header -> value) in sheet order
        code_column: Header holding item codes (auto-detected if None)
        quantity_column: Header holding required quantities (auto-detected if None)
        config: Column alias config (packaged default if None)

    Returns:
        Catalog with one Item per non-blank row

    Raises:
        InvalidInput: no rows, or no usable code column
    """
    config = config or get_default_config()
    rows = [dict(r) for r in rows if r and not all(_is_blank(v) for v in r.values())]
    if not rows:
        raise InvalidInput("Catalog has no rows")

    columns = collect_columns(rows)

    if code_column is None:
        code_column = config.find_code_column(columns)
        if code_column is None:
            raise InvalidInput(
                f"No code column found. Expected one of: {', '.join(config.code_columns)}"
            )
    elif code_column not in columns:
        raise InvalidInput(f"Code column '{code_column}' not present in catalog")

    if quantity_column is None:
        quantity_column = config.find_quantity_column(columns)
    elif quantity_column not in columns:
        raise InvalidInput(f"Quantity column '{quantity_column}' not present in catalog")

    items = []
    for row in rows:
        attributes = {col: row.get(col) for col in columns}
        items.append(Item(
            code=canonical_code(row.get(code_column)),
            required_quantity=parse_quantity(row.get(quantity_column)) if quantity_column else None,
            attributes=attributes,
        ))

    missing_codes = sum(1 for i in items if i.code is None)
    if missing_codes:
        logger.warning(f"{missing_codes} catalog rows have no value in '{code_column}'")

    return Catalog(
        items=tuple(items),
        columns=tuple(columns),
        code_column=code_column,
        quantity_column=quantity_column,
    )


def choose_mode(catalog: Catalog, override: str = "auto") -> ScanMode:
    """
    Scan mode for a session, decided once per catalog version.

    "auto" picks MULTISET when the catalog declares a quantity column.
    """
    if override and override != "auto":
        return ScanMode(override)
    return ScanMode.MULTISET if catalog.declares_quantity else ScanMode.SET


def catalog_from_payload(
    payload: Any,
    code_column: Optional[str] = None,
    quantity_column: Optional[str] = None,
    config: Optional[Config] = None,
) -> Catalog:
    """
    Catalog from a wire payload.

    Accepts either raw spreadsheet rows (a list of header -> value mappings,
    as uploaded by the host) or a serialized Catalog (as sent between
    participants that already built one).

    Raises:
        InvalidInput: payload is neither shape, or the rows are unusable
    """
    if isinstance(payload, Mapping) and "items" in payload:
        catalog = Catalog.from_dict(payload)
        if catalog.code_column is None and catalog.items:
            raise InvalidInput("Serialized catalog has no code column")
        return catalog
    if isinstance(payload, list):
        if not all(isinstance(row, Mapping) for row in payload):
            raise InvalidInput("Catalog rows must be objects keyed by column name")
        return build_catalog(payload, code_column, quantity_column, config)
    raise InvalidInput("Catalog must be a list of rows or a serialized catalog")

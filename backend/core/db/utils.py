"""
Shared database utilities.

Common functions used across database modules for:
- Timestamp handling
- JSON field parsing
"""
import json
import time
from typing import Any, Optional


def now_ms() -> int:
    """
    Get the current time as epoch milliseconds.

    Returns:
        Integer milliseconds since the epoch
    """
    return int(time.time() * 1000)


def parse_json_field(value: Optional[str], default: Any = None) -> Any:
    """
    Safely parse a JSON field from the database.

    Args:
        value: JSON string from database, may be None
        default: Default value if parsing fails or value is None

    Returns:
        Parsed JSON value or default
    """
    if not value:
        return default if default is not None else []
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default if default is not None else []


def to_json(value: Any) -> str:
    """
    Convert a value to JSON string for database storage.

    Non-JSON cell values from spreadsheets (dates, decimals) are stored as text.

    Args:
        value: Value to serialize

    Returns:
        JSON string
    """
    return json.dumps(value, default=str, ensure_ascii=False)

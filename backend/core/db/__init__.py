"""
Database package for Tally.

All functions are re-exported here so callers can import from one place:

    from backend.core.db import get_session_record, update_session_record
"""

# Base - connection, initialization
from .base import (
    DB_PATH,
    get_db,
    init_db,
)

# Utilities
from .utils import (
    now_ms,
    parse_json_field,
    to_json,
)

# Scan sessions
from .sessions import (
    insert_session,
    get_session_record,
    update_session_record,
    delete_session_record,
    purge_expired_sessions,
    count_sessions,
)

__all__ = [
    "DB_PATH",
    "get_db",
    "init_db",
    "now_ms",
    "parse_json_field",
    "to_json",
    "insert_session",
    "get_session_record",
    "update_session_record",
    "delete_session_record",
    "purge_expired_sessions",
    "count_sessions",
]

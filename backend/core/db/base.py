"""
Database base module - connection management and initialization.
"""
import sqlite3
from pathlib import Path
from contextlib import contextmanager

from backend.core.config import settings

# Database location (relative paths resolve against the repository root)
DB_PATH = Path(settings.DB_PATH)
if not DB_PATH.is_absolute():
    DB_PATH = Path(__file__).resolve().parents[3] / DB_PATH


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(str(DB_PATH))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


SCHEMA = """
    -- Scan sessions: one row per shared session, catalog and ledger as JSON
    CREATE TABLE IF NOT EXISTS scan_sessions (
        code TEXT PRIMARY KEY,
        catalog TEXT NOT NULL,              -- JSON blob of the catalog
        scanned_codes TEXT NOT NULL DEFAULT '[]',  -- JSON array, acceptance order
        mode TEXT DEFAULT 'set',            -- 'set' or 'multiset'
        created_at INTEGER NOT NULL,        -- epoch ms
        expires_at INTEGER NOT NULL,        -- epoch ms
        updated_at INTEGER
    );

    CREATE INDEX IF NOT EXISTS idx_scan_sessions_expires ON scan_sessions(expires_at);
"""


def init_db():
    """Initialize database tables."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        # WAL allows concurrent reads while a scan write holds the lock
        conn.execute("PRAGMA journal_mode=WAL")
        # Wait up to 5 seconds on lock contention between concurrent scans
        conn.execute("PRAGMA busy_timeout=5000")
        conn.executescript(SCHEMA)

"""
Scan session database operations.

Every write is a read-modify-write under BEGIN IMMEDIATE, so two scans
submitted for the same session at the same time are serialized by SQLite
instead of the later one overwriting the earlier.
"""
import logging
from typing import Any, Callable, Optional, Tuple

from tally.reconcile.models import Catalog, Ledger, ScanMode, Session

from .base import get_db
from .utils import parse_json_field, to_json

logger = logging.getLogger(__name__)


def _row_to_session(row) -> Session:
    return Session(
        id=row["code"],
        catalog=Catalog.from_dict(parse_json_field(row["catalog"], default={})),
        ledger=Ledger.from_list(parse_json_field(row["scanned_codes"], default=[])),
        mode=ScanMode(row["mode"] or ScanMode.SET.value),
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


def _begin_write(conn) -> None:
    if not conn.in_transaction:
        conn.execute("BEGIN IMMEDIATE")


def insert_session(session: Session, now: int) -> bool:
    """
    Insert a session unless its code is held by a live session.

    An expired row under the same code is replaced.

    Returns:
        True if inserted, False on collision
    """
    with get_db() as conn:
        _begin_write(conn)
        conn.execute(
            "DELETE FROM scan_sessions WHERE code = ? AND expires_at <= ?",
            (session.id, now)
        )
        result = conn.execute("""
            INSERT OR IGNORE INTO scan_sessions
            (code, catalog, scanned_codes, mode, created_at, expires_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (session.id, to_json(session.catalog.to_dict()), to_json(session.ledger.to_list()),
              session.mode.value, session.created_at, session.expires_at, now))
        return result.rowcount > 0


def get_session_record(code: str, now: int) -> Optional[Session]:
    """Get a live session by code (None if absent or expired)."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM scan_sessions WHERE code = ? AND expires_at > ?",
            (code, now)
        ).fetchone()
        if row:
            return _row_to_session(row)
    return None


def update_session_record(
    code: str,
    now: int,
    mutate: Callable[[Session], Tuple[Session, Any]],
) -> Tuple[Optional[Session], Any]:
    """
    Atomically read, mutate and write back one session.

    Args:
        code: Session code
        now: Current time (epoch ms), expired rows count as absent
        mutate: Receives the stored session, returns (new_session, result)

    Returns:
        (new_session, result), or (None, None) if the session is absent
    """
    with get_db() as conn:
        _begin_write(conn)
        row = conn.execute(
            "SELECT * FROM scan_sessions WHERE code = ? AND expires_at > ?",
            (code, now)
        ).fetchone()
        if not row:
            return None, None

        session, result = mutate(_row_to_session(row))

        conn.execute("""
            UPDATE scan_sessions SET
                catalog = ?, scanned_codes = ?, mode = ?, expires_at = ?, updated_at = ?
            WHERE code = ?
        """, (to_json(session.catalog.to_dict()), to_json(session.ledger.to_list()),
              session.mode.value, session.expires_at, now, code))

    return session, result


def delete_session_record(code: str) -> bool:
    """Delete a session. Returns True if a row was removed."""
    with get_db() as conn:
        result = conn.execute("DELETE FROM scan_sessions WHERE code = ?", (code,))
        return result.rowcount > 0


def purge_expired_sessions(now: int) -> int:
    """Delete every expired session. Returns the number removed."""
    with get_db() as conn:
        result = conn.execute("DELETE FROM scan_sessions WHERE expires_at <= ?", (now,))
        removed = result.rowcount
    if removed:
        logger.info(f"Purged {removed} expired sessions")
    return removed


def count_sessions(now: int) -> int:
    """Number of live sessions."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM scan_sessions WHERE expires_at > ?",
            (now,)
        ).fetchone()
        return row["n"]

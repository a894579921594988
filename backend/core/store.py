"""
Session stores - the authoritative owner of session state.

The store pattern lets the session service run unchanged over SQLite (the
poll/store deployment) or plain memory (the relay hub, whose sessions live only
as long as the hub process). Both implementations make read-modify-write
atomic per session code.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Tuple

from tally.reconcile.models import Session

from backend.core import db

Mutator = Callable[[Session], Tuple[Session, Any]]


class SessionStore(ABC):
    """
    Abstract keyed store with TTL semantics.

    Every method takes `now` (epoch ms); a session whose expires_at is not in
    the future is treated as absent.
    """

    @abstractmethod
    def get(self, code: str, now: int) -> Optional[Session]:
        """Fetch a live session, or None."""
        pass

    @abstractmethod
    def insert(self, session: Session, now: int) -> bool:
        """Insert unless the code is held by a live session. False on collision."""
        pass

    @abstractmethod
    def update(self, code: str, now: int, mutate: Mutator) -> Tuple[Optional[Session], Any]:
        """Atomic read-modify-write. (None, None) if absent."""
        pass

    @abstractmethod
    def delete(self, code: str) -> bool:
        pass

    @abstractmethod
    def purge_expired(self, now: int) -> int:
        pass

    @abstractmethod
    def count(self, now: int) -> int:
        pass


class SQLiteSessionStore(SessionStore):
    """Durable store backed by the scan_sessions table."""

    def get(self, code: str, now: int) -> Optional[Session]:
        return db.get_session_record(code, now)

    def insert(self, session: Session, now: int) -> bool:
        return db.insert_session(session, now)

    def update(self, code: str, now: int, mutate: Mutator) -> Tuple[Optional[Session], Any]:
        return db.update_session_record(code, now, mutate)

    def delete(self, code: str) -> bool:
        return db.delete_session_record(code)

    def purge_expired(self, now: int) -> int:
        return db.purge_expired_sessions(now)

    def count(self, now: int) -> int:
        return db.count_sessions(now)


class InMemorySessionStore(SessionStore):
    """
    Process-local store scoped to its owner's lifetime.

    Used by the relay hub and by tests. Returned sessions are copies, so
    callers can't mutate the stored state behind the lock.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()

    def _live(self, code: str, now: int) -> Optional[Session]:
        session = self._sessions.get(code)
        if session is None:
            return None
        if session.is_expired(now):
            del self._sessions[code]
            return None
        return session

    def get(self, code: str, now: int) -> Optional[Session]:
        with self._lock:
            session = self._live(code, now)
            return replace(session) if session else None

    def insert(self, session: Session, now: int) -> bool:
        with self._lock:
            if self._live(session.id, now) is not None:
                return False
            self._sessions[session.id] = replace(session)
            return True

    def update(self, code: str, now: int, mutate: Mutator) -> Tuple[Optional[Session], Any]:
        with self._lock:
            current = self._live(code, now)
            if current is None:
                return None, None
            session, result = mutate(replace(current))
            self._sessions[code] = replace(session)
            return replace(session), result

    def delete(self, code: str) -> bool:
        with self._lock:
            return self._sessions.pop(code, None) is not None

    def purge_expired(self, now: int) -> int:
        with self._lock:
            expired = [code for code, s in self._sessions.items() if s.is_expired(now)]
            for code in expired:
                del self._sessions[code]
            return len(expired)

    def count(self, now: int) -> int:
        with self._lock:
            return sum(1 for s in self._sessions.values() if not s.is_expired(now))

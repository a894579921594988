"""
Session service - catalog management and scan submission over a store.

Both synchronizer designs go through this class: the REST routers with the
SQLite store, the relay hub with an in-memory store. Classification always
happens here, against the authoritative copy, inside the store's atomic update.
"""
import logging
from functools import lru_cache
from typing import Callable, Optional

from tally.reconcile.catalog import choose_mode
from tally.reconcile.classifier import Decision, apply, classify
from tally.reconcile.codes import DEFAULT_ATTEMPTS, allocate_code, generate_code, normalize_session_code
from tally.reconcile.errors import InvalidInput, SessionNotFound
from tally.reconcile.models import Catalog, Ledger, Session
from tally.reconcile.report import Report, generate_report

from backend.core.config import settings
from backend.core.db.utils import now_ms
from backend.core.store import SessionStore, SQLiteSessionStore

logger = logging.getLogger(__name__)


class SessionService:
    """
    Owns the session lifecycle for one store.

    Args:
        store: Authoritative session store
        clock: Returns the current time in epoch ms (injectable for TTL tests)
        ttl_seconds: Lifetime refreshed on every write
        attempts: Session code claims tried before giving up
        scan_mode: "auto", "set" or "multiset"
        code_generator: Session code source (injectable for collision tests)
    """

    def __init__(
        self,
        store: SessionStore,
        clock: Callable[[], int] = now_ms,
        ttl_seconds: Optional[int] = None,
        attempts: Optional[int] = None,
        scan_mode: Optional[str] = None,
        code_generator: Callable[[], str] = generate_code,
    ):
        self.store = store
        self.clock = clock
        self.ttl_ms = int((ttl_seconds if ttl_seconds is not None else settings.SESSION_TTL_SECONDS) * 1000)
        self.attempts = attempts or settings.SESSION_CODE_ATTEMPTS or DEFAULT_ATTEMPTS
        self.scan_mode = scan_mode or settings.SCAN_MODE
        self.code_generator = code_generator

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_session(self, catalog: Catalog) -> Session:
        """
        Publish a catalog under a fresh session code.

        Raises:
            InvalidInput: empty catalog
            CodeSpaceExhausted: every generated code collided
        """
        if not catalog.items:
            raise InvalidInput("Catalog has no items")

        mode = choose_mode(catalog, self.scan_mode)
        now = self.clock()
        created = {}

        def try_claim(code: str) -> bool:
            session = Session(
                id=code,
                catalog=catalog,
                ledger=Ledger(),
                mode=mode,
                created_at=now,
                expires_at=now + self.ttl_ms,
            )
            if self.store.insert(session, now):
                created["session"] = session
                return True
            return False

        allocate_code(try_claim, attempts=self.attempts, generator=self.code_generator)
        session = created["session"]
        logger.info(f"Created session {session.id} with {len(catalog)} items ({mode.value} mode)")
        return session

    def open_session(self, session_id: str) -> Session:
        """
        Get a session, creating an empty one under this id if absent.

        The relay hub uses this so a host can join before uploading.
        """
        code = normalize_session_code(session_id)
        now = self.clock()
        session = Session(
            id=code,
            catalog=Catalog(),
            ledger=Ledger(),
            mode=choose_mode(Catalog(), self.scan_mode),
            created_at=now,
            expires_at=now + self.ttl_ms,
        )
        if self.store.insert(session, now):
            logger.info(f"Opened empty session {code}")
            return session
        return self.get_session(code)

    def get_session(self, session_id: str) -> Session:
        """
        Raises:
            InvalidInput: malformed session id
            SessionNotFound: never created or expired
        """
        code = normalize_session_code(session_id)
        session = self.store.get(code, self.clock())
        if session is None:
            raise SessionNotFound(code)
        return session

    def replace_catalog(self, session_id: str, catalog: Catalog) -> Session:
        """Swap the catalog and reset the ledger in one atomic write."""
        code = normalize_session_code(session_id)
        now = self.clock()
        mode = choose_mode(catalog, self.scan_mode)

        def mutate(session: Session):
            updated = session.with_catalog(catalog, mode)
            updated.touch(now, self.ttl_ms)
            return updated, None

        session, _ = self.store.update(code, now, mutate)
        if session is None:
            raise SessionNotFound(code)
        logger.info(f"Replaced catalog of session {code}: {len(catalog)} items ({mode.value} mode)")
        return session

    def clear_session(self, session_id: str) -> bool:
        """Destroy a session. Clearing an absent session is not an error."""
        code = normalize_session_code(session_id)
        removed = self.store.delete(code)
        if removed:
            logger.info(f"Cleared session {code}")
        return removed

    def purge_expired(self) -> int:
        return self.store.purge_expired(self.clock())

    # =========================================================================
    # Scans
    # =========================================================================

    def submit_scan(self, session_id: str, raw_code) -> Decision:
        """
        Classify a scan against the authoritative session and record it.

        Raises:
            SessionNotFound: session absent or expired
        """
        code = normalize_session_code(session_id)
        now = self.clock()

        def mutate(session: Session):
            decision = classify(session, raw_code)
            updated = apply(session, decision)
            if decision.mutates:
                updated.touch(now, self.ttl_ms)
            return updated, decision

        session, decision = self.store.update(code, now, mutate)
        if session is None:
            raise SessionNotFound(code)

        if decision.is_duplicate:
            logger.info(f"Session {code}: {decision.outcome.value} scan of {decision.code}")
        elif not decision.mutates:
            logger.info(f"Session {code}: rejected scan ({decision.reason})")
        return decision

    # =========================================================================
    # Reporting
    # =========================================================================

    def report(self, session_id: str) -> Report:
        session = self.get_session(session_id)
        return generate_report(session.catalog, session.ledger, session.mode)

    def stats(self, session_id: str) -> dict:
        """Progress counters shown on every participant's screen."""
        summary = self.report(session_id).summary
        return {
            "total": summary.total,
            "scanned": summary.matched,
            "pending": summary.missing,
            "surplus": summary.surplus,
            "percentage": summary.percentage_complete,
        }


@lru_cache
def get_session_service() -> SessionService:
    """Process-wide service over the SQLite store (REST synchronizer)."""
    return SessionService(SQLiteSessionStore())

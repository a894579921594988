"""
Participant - one device's view of a shared session.

Scans are classified locally against the replica first, so feedback is
instant, then submitted to the owner in the background. The owner classifies
again against authoritative state; when the two disagree (another device got
there first) the owner wins and the local entry is dropped.

Network failures never lose a scan: the code stays in `pending`, sync_state
becomes "pending", and the code is resubmitted on the next poll tick (store
design) or on rejoin (relay design).
"""

import asyncio
import logging
from collections import Counter, deque
from dataclasses import replace
from typing import Callable, Optional

from tally.handoff import parse_payload
from tally.reconcile.classifier import Decision, apply, classify
from tally.reconcile.errors import CapabilityUnavailable, InvalidInput, SessionNotFound, TransientNetworkError
from tally.reconcile.models import Catalog, Ledger, ScanMode, Session
from tally.reconcile.report import Report, export_csv, generate_report

from .base import Synchronizer
from .local_store import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0

SYNC_IDLE = "idle"
SYNC_SYNCED = "synced"
SYNC_PENDING = "pending"

# Local store keys
KEY_SESSION = "session"
KEY_PENDING = "pending"
KEY_IS_HOST = "isHost"


def _without_last(ledger: Ledger, code: str) -> Ledger:
    """Ledger minus the most recent occurrence of code."""
    entries = list(ledger.entries)
    for i in range(len(entries) - 1, -1, -1):
        if entries[i] == code:
            del entries[i]
            break
    return Ledger(tuple(entries))


def _same_catalog(a: Catalog, b: Catalog) -> bool:
    """Same catalog version (attribute values may differ in type after a JSON round trip)."""
    def key(catalog: Catalog):
        return catalog.code_column, [(i.code, i.required_quantity) for i in catalog.items]
    return key(a) == key(b)


class Participant:
    """
    Host or scanner attached to at most one session.

    Args:
        synchronizer: Transport to the session owner
        store: On-device persistence (memory if None)
        poll_interval: Seconds between polls (store design only)
        auto_sync: Poll while a session is active
        notify: Called with each user-facing message
    """

    def __init__(
        self,
        synchronizer: Synchronizer,
        store: Optional[KeyValueStore] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        auto_sync: bool = True,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.sync = synchronizer
        self.store = store or InMemoryKeyValueStore()
        self.poll_interval = poll_interval
        self.auto_sync = auto_sync
        self.notify = notify or (lambda message: logger.info(message))

        self.session: Optional[Session] = None
        self.is_host = False
        self.pending: list[str] = []
        self.sync_state = SYNC_IDLE
        self.participant_count = 0
        self.messages: deque[str] = deque(maxlen=50)

        self._in_flight: Counter = Counter()
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None

        self.sync.add_listener(self._on_event)

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist(self) -> None:
        """Save the replica and pending scans; a failing store only costs restart recovery."""
        try:
            if self.session is None:
                self.store.clear()
                return
            self.store.set(KEY_SESSION, self.session.to_dict())
            self.store.set(KEY_PENDING, list(self.pending))
            self.store.set(KEY_IS_HOST, self.is_host)
        except CapabilityUnavailable as e:
            logger.warning(f"Local state not saved: {e.detail}")
            self._say(e.hint)

    def restore(self) -> Optional[Session]:
        """Reload the last session from the local store (after a restart)."""
        data = self.store.get(KEY_SESSION)
        if not data:
            return None
        self.session = Session.from_dict(data)
        self.pending = list(self.store.get(KEY_PENDING, []))
        self.is_host = bool(self.store.get(KEY_IS_HOST, False))
        self.sync_state = SYNC_PENDING if self.pending else SYNC_SYNCED
        logger.info(f"Restored session {self.session.id} ({len(self.pending)} pending scans)")
        return self.session

    def _say(self, message: str) -> None:
        self.messages.append(message)
        self.notify(message)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def _adopt(self, session: Session, host: bool) -> None:
        self.session = session
        self.is_host = host
        self.pending = []
        self._in_flight.clear()
        self.participant_count = session.participant_count
        self.sync_state = SYNC_SYNCED
        self._persist()
        self.start_polling()

    async def host(self, catalog: Catalog) -> Session:
        """Publish a catalog as a new session and become its host."""
        session = await self.sync.create_session(catalog)
        self._adopt(session, host=True)
        self._say(f"Session {session.id} created with {len(catalog)} items")
        return session

    async def join(self, session_id: str) -> Session:
        session = await self.sync.join(session_id)
        self._adopt(session, host=False)
        self._say(f"Joined session {session.id}")
        return session

    async def publish_catalog(self, catalog: Catalog) -> Session:
        """Replace the session catalog; every ledger is reset."""
        if self.session is None:
            raise InvalidInput("No active session")
        session = await self.sync.publish_catalog(self.session.id, catalog)
        self.session = session
        self.pending = []
        self._in_flight.clear()
        self._persist()
        self._say(f"Catalog updated: {len(catalog)} items")
        return session

    async def leave(self, clear_remote: bool = False) -> None:
        """Forget the session locally (and destroy it remotely if asked)."""
        self.stop_polling()
        if self.session is not None and clear_remote:
            await self.sync.clear_session(self.session.id)
        self.session = None
        self.is_host = False
        self.pending = []
        self._in_flight.clear()
        self.sync_state = SYNC_IDLE
        self.store.clear()

    async def drain(self) -> None:
        """Wait for background submits to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self.stop_polling()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.sync.close()

    # =========================================================================
    # Scanning
    # =========================================================================

    def scan(self, raw) -> Optional[Decision]:
        """
        Handle one decoded text.

        A handoff QR joins its session (returns None). Anything else is
        classified against the local replica; mutating outcomes are applied
        at once and submitted in the background.

        Must be called on the participant's event loop for the submit to
        start immediately; otherwise the code waits for the next flush.
        """
        if isinstance(raw, str):
            handoff = parse_payload(raw)
            if handoff is not None:
                self._say(f"Joining session {handoff.session_id}")
                self._spawn(self.join(handoff.session_id))
                return None

        if self.session is None:
            raise InvalidInput("No active session")

        decision = classify(self.session, raw)
        self._say(decision.message)
        if not decision.mutates:
            return decision

        self.session = apply(self.session, decision)
        self.pending.append(decision.code)
        self.sync_state = SYNC_PENDING
        self._spawn(self._submit(decision.code))
        self._persist()
        return decision

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _submit(self, code: str) -> None:
        if self.session is None:
            return
        session_id = self.session.id
        self._in_flight[code] += 1
        try:
            result = await self.sync.submit_scan(session_id, code)
        except TransientNetworkError as e:
            logger.warning(f"Scan {code} not delivered, will retry: {e.detail}")
            self.sync_state = SYNC_PENDING
            return
        except SessionNotFound:
            self._say("Session expired or was closed")
            self.sync_state = SYNC_PENDING
            return
        except InvalidInput as e:
            self._reject(code, f"Scan {code} rejected: {e.detail}")
            return
        finally:
            self._in_flight[code] -= 1

        if self.session is None or self.session.id != session_id:
            return
        if result.mutates:
            if code in self.pending:
                self.pending.remove(code)
        else:
            self._reject(code, result.message)
        if not self.pending:
            self.sync_state = SYNC_SYNCED
        self._persist()

    def _reject(self, code: str, message: str) -> None:
        """Owner refused a locally accepted scan: undo the local entry."""
        if code in self.pending:
            self.pending.remove(code)
            if self.session is not None:
                self.session = replace(self.session, ledger=_without_last(self.session.ledger, code))
        self._say(message)
        self._persist()

    async def flush(self) -> int:
        """Resubmit pending codes that are not already in flight. Returns count sent."""
        waiting = Counter(self.pending) - self._in_flight
        sent = 0
        for code, n in waiting.items():
            for _ in range(n):
                await self._submit(code)
                sent += 1
        return sent

    # =========================================================================
    # Sync
    # =========================================================================

    def _merge(self, fetched: Session) -> None:
        """
        Replace the local ledger with the owner's, then re-append pending
        scans the owner doesn't have yet.
        """
        if self.session is None:
            return
        if not _same_catalog(fetched.catalog, self.session.catalog):
            if self.pending:
                logger.info(f"Catalog replaced; dropping {len(self.pending)} pending scans")
            self.session = fetched
            self.pending = []
            return

        merged = fetched
        keep = []
        for code in self.pending:
            decision = classify(merged, code)
            if decision.mutates:
                merged = apply(merged, decision)
                keep.append(code)
        self.session = merged
        self.pending = keep

    async def refresh(self) -> Session:
        """Fetch the owner's snapshot and merge it."""
        if self.session is None:
            raise InvalidInput("No active session")
        fetched = await self.sync.poll(self.session.id)
        self._merge(fetched)
        self.participant_count = fetched.participant_count or self.participant_count
        if not self.pending:
            self.sync_state = SYNC_SYNCED
        self._persist()
        return self.session

    async def rejoin(self) -> Session:
        """Reattach after a dropped connection, then resend what was missed."""
        if self.session is None:
            raise InvalidInput("No active session")
        fetched = await self.sync.join(self.session.id)
        self._merge(fetched)
        await self.flush()
        if not self.pending:
            self.sync_state = SYNC_SYNCED
        self._persist()
        return self.session

    async def sync_once(self) -> None:
        """One poll tick: resend stragglers, then refresh."""
        if self.pending:
            await self.flush()
        await self.refresh()

    def set_auto_sync(self, enabled: bool) -> None:
        self.auto_sync = enabled
        if enabled:
            self.start_polling()
        else:
            self.stop_polling()

    def start_polling(self) -> None:
        """Poll only with an active session, auto-sync on, and no push transport."""
        if self.session is None or not self.auto_sync or self.sync.pushes_updates:
            return
        if self._poll_task is not None and not self._poll_task.done():
            return
        try:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        except RuntimeError:
            self._poll_task = None

    def stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self) -> None:
        while self.session is not None and self.auto_sync:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.sync_once()
            except TransientNetworkError as e:
                logger.warning(f"Poll failed: {e.detail}")
                self.sync_state = SYNC_PENDING
            except SessionNotFound:
                self._say("Session expired or was closed")
                self.sync_state = SYNC_PENDING
                break

    def _on_event(self, event: str, data: dict) -> None:
        """Changes pushed by the relay hub on behalf of other participants."""
        if self.session is None:
            return

        if event == "scan-applied":
            code = data.get("code")
            if code:
                self.session = replace(self.session, ledger=self.session.ledger.append(code))
                self._persist()
        elif event == "catalog-updated":
            catalog = Catalog.from_dict(data.get("catalog") or {})
            mode = data.get("mode", self.session.mode.value)
            self.session = replace(
                self.session.with_catalog(catalog, ScanMode(mode)),
                ledger=Ledger.from_list(data.get("scannedCodes")),
            )
            self.pending = []
            self._persist()
            self._say(f"Catalog updated: {len(catalog)} items")
        elif event == "participants":
            self.participant_count = int(data.get("count", 0))
        elif event == "disconnected":
            if self.session is not None:
                self.sync_state = SYNC_PENDING
        elif event == "error":
            self._say(data.get("detail", "Sync error"))

    # =========================================================================
    # Reporting
    # =========================================================================

    def report(self) -> Report:
        if self.session is None:
            raise InvalidInput("No active session")
        return generate_report(self.session.catalog, self.session.ledger, self.session.mode)

    def export_csv(self) -> str:
        return export_csv(self.report())

    def stats(self) -> dict:
        summary = self.report().summary
        return {
            "total": summary.total,
            "scanned": summary.matched,
            "pending": summary.missing,
            "surplus": summary.surplus,
            "percentage": summary.percentage_complete,
        }

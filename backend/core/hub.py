"""
Relay hub - broadcast synchronization over persistent connections.

The hub keeps, per session, the set of joined connection handles and routes
every state change through the SessionService, so the hub's copy is the
authoritative one. Changes are fanned out to every member in the order the hub
received them; the sender is included.

When the last member leaves, a grace timer starts. If nobody has rejoined
when it fires, the session is destroyed.

Wire frames are JSON objects: {"event": <name>, "data": {...}}
"""
import asyncio
import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol, Set

from tally.reconcile.catalog import catalog_from_payload
from tally.reconcile.classifier import ScanOutcome
from tally.reconcile.codes import normalize_session_code
from tally.reconcile.errors import InvalidInput, SessionNotFound, TallyError

from backend.core.config import settings
from backend.core.sessions import SessionService
from backend.core.store import InMemorySessionStore, SQLiteSessionStore

logger = logging.getLogger(__name__)

# Client -> hub
CREATE_SESSION = "create-session"
JOIN_SESSION = "join-session"
NEW_SCAN = "new-scan"
UPDATE_CATALOG = "update-catalog"

# Hub -> client
SESSION_DATA = "session-data"
SCAN_APPLIED = "scan-applied"
SCAN_DUPLICATE = "scan-duplicate"
CATALOG_UPDATED = "catalog-updated"
PARTICIPANTS = "participants"
ERROR = "error"


class Connection(Protocol):
    """Anything that can deliver a JSON frame (a Starlette WebSocket, a test fake)."""

    async def send_json(self, data: Any) -> None:
        ...


def frame(event: str, data: dict) -> dict:
    return {"event": event, "data": data}


class RelayHub:
    """
    Session membership and fan-out.

    Args:
        service: Session service over the hub's store
        grace_seconds: How long an empty session survives before it is destroyed
    """

    def __init__(self, service: SessionService, grace_seconds: Optional[float] = None):
        self.service = service
        self.grace_seconds = grace_seconds if grace_seconds is not None else settings.RELAY_GRACE_SECONDS
        self._members: Dict[str, Set[Connection]] = {}
        self._joined: Dict[Connection, str] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Membership
    # =========================================================================

    def participant_count(self, session_id: str) -> int:
        return len(self._members.get(session_id, ()))

    def has_grace_timer(self, session_id: str) -> bool:
        return session_id in self._timers

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def join(self, conn: Connection, session_id: str, request_id: Optional[str] = None) -> None:
        """
        Add a connection to a session and send it the current snapshot.

        An unknown id creates an empty session, so the host may join first and
        publish its catalog afterwards.
        """
        code = normalize_session_code(session_id)

        previous = self._joined.get(conn)
        if previous and previous != code:
            await self._remove(conn)

        self._cancel_grace(code)
        session = self.service.open_session(code)

        self._members.setdefault(code, set()).add(conn)
        self._joined[conn] = code
        count = self.participant_count(code)
        logger.info(f"Connection joined session {code} ({count} participants)")

        await conn.send_json(frame(SESSION_DATA, {
            "sessionId": code,
            "catalog": session.catalog.to_dict(),
            "scannedCodes": session.ledger.to_list(),
            "mode": session.mode.value,
            "participantCount": count,
            **_correlate(request_id),
        }))
        await self.broadcast(code, PARTICIPANTS, {"count": count})

    async def create_session(self, conn: Connection, payload: Any,
                             code_column: Optional[str] = None,
                             quantity_column: Optional[str] = None,
                             request_id: Optional[str] = None) -> None:
        """
        Claim a fresh code in the store, then join the sender to it.

        The code is reserved by the store insert, so a session someone else
        opened or published under the same code is never overwritten.
        """
        catalog = catalog_from_payload(payload, code_column, quantity_column)
        session = self.service.create_session(catalog)
        await self.join(conn, session.id, request_id)

    async def disconnect(self, conn: Connection) -> None:
        """Transport closed: drop membership, start the grace timer if now empty."""
        await self._remove(conn)

    async def _remove(self, conn: Connection) -> None:
        code = self._joined.pop(conn, None)
        if code is None:
            return
        members = self._members.get(code)
        if members is not None:
            members.discard(conn)
        count = self.participant_count(code)
        logger.info(f"Connection left session {code} ({count} participants)")

        if count == 0:
            self._members.pop(code, None)
            self._start_grace(code)
        else:
            await self.broadcast(code, PARTICIPANTS, {"count": count})

    # =========================================================================
    # Grace timers
    # =========================================================================

    def _start_grace(self, code: str) -> None:
        self._cancel_grace(code)
        loop = asyncio.get_running_loop()
        self._timers[code] = loop.call_later(self.grace_seconds, self._expire, code)
        logger.info(f"Session {code} is empty, destroying in {self.grace_seconds}s unless rejoined")

    def _cancel_grace(self, code: str) -> None:
        timer = self._timers.pop(code, None)
        if timer is not None:
            timer.cancel()
            logger.info(f"Grace timer for session {code} cancelled")

    def _expire(self, code: str) -> None:
        self._timers.pop(code, None)
        if self.participant_count(code) > 0:
            return
        self._locks.pop(code, None)
        self.service.clear_session(code)
        logger.info(f"Session {code} destroyed after grace period")

    async def close(self) -> None:
        """Cancel every pending timer (hub shutdown)."""
        for code in list(self._timers):
            self._cancel_grace(code)

    # =========================================================================
    # Events
    # =========================================================================

    async def broadcast(self, code: str, event: str, data: dict) -> None:
        """Send one frame to every member of a session, dropping dead handles."""
        message = frame(event, data)
        for conn in list(self._members.get(code, ())):
            try:
                await conn.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping connection from session {code}: {e}")
                await self._remove(conn)

    async def new_scan(self, conn: Connection, session_id: str, raw_code: Any,
                       request_id: Optional[str] = None) -> None:
        code = normalize_session_code(session_id)
        async with self._lock(code):
            decision = self.service.submit_scan(code, raw_code)

            if decision.mutates:
                await self.broadcast(code, SCAN_APPLIED, {
                    "code": decision.code,
                    "outcome": decision.outcome.value,
                    "totalScanned": decision.total_scanned,
                    "progressPercent": decision.progress,
                    **_correlate(request_id),
                })
            elif decision.outcome == ScanOutcome.INVALID:
                await conn.send_json(frame(ERROR, {
                    "kind": InvalidInput.kind,
                    "detail": decision.message,
                    **_correlate(request_id),
                }))
            else:
                await conn.send_json(frame(SCAN_DUPLICATE, {
                    "code": decision.code,
                    "outcome": decision.outcome.value,
                    "message": decision.message,
                    **_correlate(request_id),
                }))

    async def update_catalog(self, conn: Connection, session_id: str, payload: Any,
                             code_column: Optional[str] = None,
                             quantity_column: Optional[str] = None,
                             request_id: Optional[str] = None) -> None:
        code = normalize_session_code(session_id)
        catalog = catalog_from_payload(payload, code_column, quantity_column)
        async with self._lock(code):
            session = self.service.replace_catalog(code, catalog)
            await self.broadcast(code, CATALOG_UPDATED, {
                "catalog": session.catalog.to_dict(),
                "scannedCodes": [],
                "mode": session.mode.value,
                **_correlate(request_id),
            })

    async def dispatch(self, conn: Connection, message: Any) -> None:
        """
        Route one client frame.

        Domain errors are reported to the sender as `error` frames and never
        close the connection. A `requestId` in the frame's data is echoed on
        the replies it causes, so clients can match them to their request.
        """
        request_id = None
        try:
            if not isinstance(message, dict):
                raise InvalidInput("Frame must be a JSON object")
            event = message.get("event")
            data = message.get("data")
            if not isinstance(data, dict):
                data = {}
            request_id = data.get("requestId")

            if event == CREATE_SESSION:
                payload = data.get("catalog", data.get("excelData"))
                await self.create_session(
                    conn, payload, data.get("codeColumn"), data.get("quantityColumn"), request_id,
                )
            elif event == JOIN_SESSION:
                await self.join(conn, data.get("sessionId"), request_id)
            elif event == NEW_SCAN:
                session_id = data.get("sessionId") or self._joined.get(conn)
                if session_id is None:
                    raise InvalidInput("Join a session before scanning")
                await self.new_scan(conn, session_id, data.get("code"), request_id)
            elif event == UPDATE_CATALOG:
                session_id = data.get("sessionId") or self._joined.get(conn)
                if session_id is None:
                    raise InvalidInput("Join a session before publishing a catalog")
                payload = data.get("catalog", data.get("excelData"))
                await self.update_catalog(
                    conn, session_id, payload,
                    data.get("codeColumn"), data.get("quantityColumn"), request_id,
                )
            else:
                raise InvalidInput(f"Unknown event: {event}")
        except (InvalidInput, SessionNotFound) as e:
            logger.info(f"Rejected frame: {e.detail}")
            await conn.send_json(frame(ERROR, {"kind": e.kind, "detail": e.detail, **_correlate(request_id)}))
        except TallyError as e:
            logger.error(f"Relay error: {e.detail}")
            await conn.send_json(frame(ERROR, {"kind": e.kind, "detail": e.detail, **_correlate(request_id)}))


def _correlate(request_id: Optional[str]) -> dict:
    return {"requestId": request_id} if request_id is not None else {}


@lru_cache
def get_hub() -> RelayHub:
    """Process-wide hub; its sessions live as long as the process."""
    store = SQLiteSessionStore() if settings.RELAY_STORE == "sqlite" else InMemorySessionStore()
    return RelayHub(SessionService(store))

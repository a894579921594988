"""
Relay synchronizer - participant side of the relay hub design.

One persistent WebSocket per participant. A reader task decodes hub frames,
resolves the request that caused them (matched by requestId) and hands every
event to the listeners, so scans made on other devices show up immediately.
"""

import asyncio
import json
import logging
import uuid
from typing import Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from tally.reconcile.classifier import Decision
from tally.reconcile.codes import normalize_session_code
from tally.reconcile.errors import (
    CodeSpaceExhausted,
    InvalidInput,
    SessionNotFound,
    TallyError,
    TransientNetworkError,
)
from tally.reconcile.models import Catalog, Ledger, ScanMode, Session

from .base import Synchronizer, decision_from_wire

logger = logging.getLogger(__name__)

DEFAULT_REPLY_TIMEOUT = 10.0

ERRORS_BY_KIND = {
    InvalidInput.kind: InvalidInput,
    CodeSpaceExhausted.kind: CodeSpaceExhausted,
    TransientNetworkError.kind: TransientNetworkError,
}


def session_from_event(data: dict) -> Session:
    """Replica built from a session-data or catalog-updated frame."""
    return Session(
        id=data.get("sessionId", ""),
        catalog=Catalog.from_dict(data.get("catalog") or {}),
        ledger=Ledger.from_list(data.get("scannedCodes")),
        mode=ScanMode(data.get("mode", ScanMode.SET.value)),
        created_at=0,
        expires_at=0,
        participant_count=int(data.get("participantCount", 0)),
    )


class RelaySynchronizer(Synchronizer):
    """
    WebSocket client for the relay hub.

    Args:
        url: Hub endpoint, e.g. "ws://192.168.1.20:8000/ws"
        reply_timeout: Seconds to wait for the hub's answer to a request
    """

    def __init__(self, url: str, reply_timeout: float = DEFAULT_REPLY_TIMEOUT):
        super().__init__()
        self.url = url
        self.reply_timeout = reply_timeout
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: dict[str, asyncio.Future] = {}
        self.session_id: Optional[str] = None

    @property
    def pushes_updates(self) -> bool:
        return True

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._reader is not None and not self._reader.done()

    # =========================================================================
    # Transport
    # =========================================================================

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            self._ws = await websockets.connect(self.url)
        except (OSError, WebSocketException) as e:
            raise TransientNetworkError(f"Cannot reach relay hub at {self.url}: {e}")
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to relay hub {self.url}")

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from hub")
                    continue
                self._handle(message.get("event"), message.get("data") or {})
        except ConnectionClosed as e:
            logger.warning(f"Relay connection closed: {e}")
        finally:
            self._fail_pending(TransientNetworkError("Relay connection lost"))
            self._emit("disconnected", {})

    def _handle(self, event: str, data: dict) -> None:
        request_id = data.get("requestId")
        future = self._pending.pop(request_id, None) if request_id else None

        if future is not None and not future.done():
            if event == "error":
                future.set_exception(self._error(data))
            else:
                future.set_result((event, data))
            return

        # Unsolicited: a change made by another participant
        self._emit(event, data)

    def _error(self, data: dict) -> TallyError:
        kind = data.get("kind")
        detail = data.get("detail", "")
        if kind == SessionNotFound.kind:
            return SessionNotFound(self.session_id or "")
        error_cls = ERRORS_BY_KIND.get(kind) or TallyError
        return error_cls(detail)

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _request(self, event: str, data: dict) -> tuple[str, dict]:
        """Send a frame and wait for the reply carrying the same requestId."""
        await self.connect()
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        body = json.dumps({"event": event, "data": {**data, "requestId": request_id}},
                          default=str, ensure_ascii=False)
        try:
            await self._ws.send(body)
            return await asyncio.wait_for(future, self.reply_timeout)
        except ConnectionClosed as e:
            raise TransientNetworkError(f"Relay connection lost: {e}")
        except asyncio.TimeoutError:
            raise TransientNetworkError(f"No reply from relay hub to {event}")
        finally:
            self._pending.pop(request_id, None)

    # =========================================================================
    # Synchronizer
    # =========================================================================

    async def join(self, session_id: str) -> Session:
        code = normalize_session_code(session_id)
        _, data = await self._request("join-session", {"sessionId": code})
        self.session_id = code
        return session_from_event(data)

    async def poll(self, session_id: str) -> Session:
        """Re-join for a fresh snapshot (the hub pushes changes anyway)."""
        return await self.join(session_id)

    async def create_session(self, catalog: Catalog) -> Session:
        """Host flow: the hub claims a free code, publishes the catalog and joins us to it."""
        _, data = await self._request("create-session", {"catalog": catalog.to_dict()})
        session = session_from_event(data)
        self.session_id = session.id
        logger.info(f"Hosting session {session.id}")
        return session

    async def submit_scan(self, session_id: str, code: str) -> Decision:
        _, data = await self._request("new-scan", {"sessionId": session_id, "code": code})
        return decision_from_wire(data, code)

    async def publish_catalog(self, session_id: str, catalog: Catalog) -> Session:
        _, data = await self._request("update-catalog", {
            "sessionId": session_id,
            "catalog": catalog.to_dict(),
        })
        return session_from_event({**data, "sessionId": session_id})

    async def clear_session(self, session_id: str) -> None:
        """
        The hub destroys a session once everyone has left and the grace
        period passes; leaving is all a participant can do.
        """
        await self.close()

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._ws = None
        self._reader = None

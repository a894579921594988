"""
Synchronizer interface - how a participant talks to the session owner.

Two implementations share this interface:
- StoreSynchronizer: request/response against the REST store, polled
- RelaySynchronizer: persistent connection to the relay hub, pushed

The participant doesn't know which one it holds. Push events (scans applied by
other devices, catalog swaps, participant counts) reach it through listeners;
the store synchronizer simply never fires them.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from tally.reconcile.classifier import Decision, ScanOutcome
from tally.reconcile.models import Catalog, Session

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], None]


class Synchronizer(ABC):
    """
    Abstract session transport.

    All methods raise TransientNetworkError when the owner could not be
    reached, SessionNotFound for unknown or expired sessions and InvalidInput
    when the owner rejected the request.
    """

    def __init__(self):
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        """Register a callback(event, data) for pushed events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: str, data: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception(f"Listener failed on {event}")

    @property
    def pushes_updates(self) -> bool:
        """True if the owner pushes changes (no polling needed)."""
        return False

    @abstractmethod
    async def create_session(self, catalog: Catalog) -> Session:
        """Publish a catalog under a new session code."""
        pass

    @abstractmethod
    async def join(self, session_id: str) -> Session:
        """Attach to an existing session and fetch its snapshot."""
        pass

    @abstractmethod
    async def poll(self, session_id: str) -> Session:
        """Fetch the authoritative snapshot."""
        pass

    @abstractmethod
    async def submit_scan(self, session_id: str, code: str) -> Decision:
        """Submit one scan; the owner classifies it again."""
        pass

    @abstractmethod
    async def publish_catalog(self, session_id: str, catalog: Catalog) -> Session:
        """Replace the session catalog (resets every participant's ledger)."""
        pass

    @abstractmethod
    async def clear_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


def decision_from_wire(data: dict, code: Optional[str] = None) -> Decision:
    """Rebuild a Decision from an owner's scan response or event."""
    outcome = ScanOutcome(data.get("outcome", ScanOutcome.ACCEPTED.value))
    return Decision(
        outcome=outcome,
        code=data.get("code", code),
        total_scanned=int(data.get("totalScanned", 0)),
        progress=int(data.get("progressPercent", 0)),
        reason=data.get("message", "") if outcome == ScanOutcome.INVALID else "",
    )

# Participant-side synchronization: transports, local persistence, participant state.

import os
from typing import Optional

from .base import Synchronizer, decision_from_wire
from .store_client import StoreSynchronizer
from .relay_client import RelaySynchronizer
from .local_store import KeyValueStore, InMemoryKeyValueStore, JsonFileStore, open_store
from .participant import Participant, SYNC_IDLE, SYNC_SYNCED, SYNC_PENDING

SYNC_BACKENDS = ("store", "relay")


def make_synchronizer(kind: Optional[str] = None, url: str = "") -> Synchronizer:
    """
    Synchronizer for a deployment.

    Args:
        kind: "store" (REST + polling) or "relay" (WebSocket hub); defaults to
              TALLY_SYNC_BACKEND, then "store"
        url: Server root for "store" (http://host:8000), hub endpoint for
             "relay" (ws://host:8000/ws)
    """
    kind = (kind or os.environ.get("TALLY_SYNC_BACKEND", "store")).lower()
    if kind == "store":
        return StoreSynchronizer(url)
    if kind == "relay":
        return RelaySynchronizer(url)
    raise ValueError(f"Unknown sync backend: {kind} (expected one of {', '.join(SYNC_BACKENDS)})")


__all__ = [
    # Transports
    "Synchronizer",
    "StoreSynchronizer",
    "RelaySynchronizer",
    "make_synchronizer",
    "decision_from_wire",
    # Local persistence
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileStore",
    "open_store",
    # Participant
    "Participant",
    "SYNC_IDLE",
    "SYNC_SYNCED",
    "SYNC_PENDING",
]

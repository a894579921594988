"""
Tests for the participant: local-first scanning, retry and merge.

Uses a fake synchronizer that owns the authoritative session in memory, so
two participants can share it without a server.

Run with: pytest tally/sync/tests/test_participant.py -v
"""

import asyncio
from dataclasses import replace

import pytest

from tally.handoff import build_payload
from tally.reconcile.catalog import build_catalog, choose_mode
from tally.reconcile.classifier import ScanOutcome, apply, classify
from tally.reconcile.errors import (
    CAPABILITY_HINTS,
    CapabilityUnavailable,
    InvalidInput,
    SessionNotFound,
    TransientNetworkError,
)
from tally.reconcile.models import Ledger, Session
from tally.sync.base import Synchronizer
from tally.sync.local_store import InMemoryKeyValueStore, KeyValueStore
from tally.sync.participant import SYNC_IDLE, SYNC_PENDING, SYNC_SYNCED, Participant


class FakeOwner:
    """Authoritative sessions shared by every FakeSynchronizer."""

    def __init__(self):
        self.sessions: dict[str, Session] = {}
        self.next_code = "K7M2QX"


class FakeSynchronizer(Synchronizer):
    def __init__(self, owner: FakeOwner):
        super().__init__()
        self.owner = owner
        self.offline = False
        self.submitted: list[str] = []
        self.closed = False

    def _check(self):
        if self.offline:
            raise TransientNetworkError("offline")

    def _get(self, session_id):
        try:
            return self.owner.sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id)

    async def create_session(self, catalog):
        self._check()
        session = Session(id=self.owner.next_code, catalog=catalog, ledger=Ledger(),
                          mode=choose_mode(catalog), created_at=0, expires_at=10**12)
        self.owner.sessions[session.id] = session
        return replace(session)

    async def join(self, session_id):
        self._check()
        return replace(self._get(session_id))

    async def poll(self, session_id):
        return await self.join(session_id)

    async def submit_scan(self, session_id, code):
        self._check()
        self.submitted.append(code)
        session = self._get(session_id)
        decision = classify(session, code)
        self.owner.sessions[session_id] = apply(session, decision)
        return decision

    async def publish_catalog(self, session_id, catalog):
        self._check()
        session = self._get(session_id).with_catalog(catalog, choose_mode(catalog))
        self.owner.sessions[session_id] = session
        return replace(session)

    async def clear_session(self, session_id):
        self.owner.sessions.pop(session_id, None)

    async def close(self):
        self.closed = True


class UnwritableStore(KeyValueStore):
    """Local storage that refuses every write, like a full or private-mode browser."""

    def get(self, key, default=None):
        return default

    def set(self, key, value):
        raise CapabilityUnavailable("storage", "disk full")

    def delete(self, key):
        raise CapabilityUnavailable("storage", "disk full")

    def clear(self):
        raise CapabilityUnavailable("storage", "disk full")


CATALOG = build_catalog([{"Code": "A1"}, {"Code": "B2"}, {"Code": "C3"}])


@pytest.fixture
def owner():
    return FakeOwner()


def participant_for(owner, **kwargs):
    return Participant(FakeSynchronizer(owner), auto_sync=False, **kwargs)


# =============================================================================
# Hosting and joining
# =============================================================================

class TestLifecycle:
    def test_host_then_join(self, owner):
        async def run():
            host = participant_for(owner)
            scanner = participant_for(owner)
            session = await host.host(CATALOG)
            joined = await scanner.join(session.id)
            return host, scanner, joined

        host, scanner, joined = asyncio.run(run())
        assert host.is_host and not scanner.is_host
        assert joined.id == "K7M2QX"
        assert len(scanner.session.catalog) == 3
        assert scanner.sync_state == SYNC_SYNCED

    def test_join_unknown_session(self, owner):
        async def run():
            await participant_for(owner).join("ZZZZZZ")

        with pytest.raises(SessionNotFound):
            asyncio.run(run())

    def test_scan_without_session(self, owner):
        with pytest.raises(InvalidInput):
            participant_for(owner).scan("A1")

    def test_leave_clears_local_state(self, owner):
        store = InMemoryKeyValueStore()

        async def run():
            p = participant_for(owner, store=store)
            await p.host(CATALOG)
            await p.leave(clear_remote=True)
            return p

        p = asyncio.run(run())
        assert p.session is None
        assert p.sync_state == SYNC_IDLE
        assert store.get("session") is None
        assert owner.sessions == {}

    def test_handoff_qr_joins(self, owner):
        async def run():
            host = participant_for(owner)
            await host.host(CATALOG)
            scanner = participant_for(owner)
            result = scanner.scan(build_payload("k7m2qx").encode())
            await scanner.drain()
            return result, scanner

        result, scanner = asyncio.run(run())
        assert result is None
        assert scanner.session.id == "K7M2QX"


# =============================================================================
# Scanning
# =============================================================================

class TestScanning:
    def test_two_participants_share_ledger(self, owner):
        async def run():
            host = participant_for(owner)
            scanner = participant_for(owner)
            await host.host(CATALOG)
            await scanner.join("K7M2QX")

            host.scan("A1")
            scanner.scan("X9")
            await host.drain()
            await scanner.drain()
            await host.refresh()
            await scanner.refresh()
            return host, scanner

        host, scanner = asyncio.run(run())
        assert sorted(host.session.ledger.to_list()) == ["A1", "X9"]
        assert sorted(scanner.session.ledger.to_list()) == ["A1", "X9"]
        assert host.report().surplus == ["X9"] or scanner.report().surplus == ["X9"]
        assert host.stats()["scanned"] == 1

    def test_local_duplicate_not_submitted(self, owner):
        async def run():
            p = participant_for(owner)
            await p.host(CATALOG)
            first = p.scan("A1")
            await p.drain()
            second = p.scan("A1")
            await p.drain()
            return p, first, second

        p, first, second = asyncio.run(run())
        assert first.outcome == ScanOutcome.ACCEPTED
        assert second.outcome == ScanOutcome.DUPLICATE
        assert p.sync.submitted == ["A1"]
        assert p.sync_state == SYNC_SYNCED
        assert p.messages[-1] == second.message

    def test_owner_rejects_race(self, owner):
        """Both devices scan A1 offline from each other; the owner keeps one."""
        async def run():
            a = participant_for(owner)
            b = participant_for(owner)
            await a.host(CATALOG)
            await b.join("K7M2QX")

            a.scan("A1")
            await a.drain()
            b.scan("A1")  # b's replica has not seen a's scan
            await b.drain()
            return b

        b = asyncio.run(run())
        assert b.session.ledger.to_list() == []
        assert b.pending == []
        assert owner.sessions["K7M2QX"].ledger.to_list() == ["A1"]
        assert "Duplicate" in b.messages[-1]


# =============================================================================
# Offline retry
# =============================================================================

class TestRetry:
    def test_pending_survives_failure_and_flushes(self, owner):
        async def run():
            p = participant_for(owner)
            await p.host(CATALOG)
            p.sync.offline = True
            p.scan("A1")
            await p.drain()
            state_offline = (p.sync_state, list(p.pending))

            p.sync.offline = False
            await p.sync_once()
            return p, state_offline

        p, state_offline = asyncio.run(run())
        assert state_offline == (SYNC_PENDING, ["A1"])
        assert p.pending == []
        assert p.sync_state == SYNC_SYNCED
        assert owner.sessions["K7M2QX"].ledger.to_list() == ["A1"]

    def test_merge_keeps_pending_on_top_of_owner_ledger(self, owner):
        async def run():
            a = participant_for(owner)
            b = participant_for(owner)
            await a.host(CATALOG)
            await b.join("K7M2QX")

            b.sync.offline = True
            b.scan("B2")
            await b.drain()

            a.scan("A1")
            await a.drain()

            # poll succeeds but the submit is still queued
            b.sync.offline = False
            await b.refresh()
            return b

        b = asyncio.run(run())
        assert b.session.ledger.to_list() == ["A1", "B2"]
        assert b.pending == ["B2"]
        assert b.sync_state == SYNC_PENDING

    def test_catalog_change_drops_pending(self, owner):
        async def run():
            a = participant_for(owner)
            b = participant_for(owner)
            await a.host(CATALOG)
            await b.join("K7M2QX")

            b.sync.offline = True
            b.scan("A1")
            await b.drain()

            await a.publish_catalog(build_catalog([{"Code": "Z1"}]))

            b.sync.offline = False
            await b.refresh()
            return b

        b = asyncio.run(run())
        assert b.pending == []
        assert b.session.ledger.to_list() == []
        assert b.session.catalog.contains("Z1")

    def test_rejoin_resends_missed_scans(self, owner):
        async def run():
            p = participant_for(owner)
            await p.host(CATALOG)
            p.sync.offline = True
            p.scan("A1")
            p.scan("B2")
            await p.drain()
            p.sync._emit("disconnected", {})

            p.sync.offline = False
            await p.rejoin()
            return p

        p = asyncio.run(run())
        assert p.pending == []
        assert p.sync_state == SYNC_SYNCED
        assert owner.sessions["K7M2QX"].ledger.to_list() == ["A1", "B2"]
        assert p.session.ledger.to_list() == ["A1", "B2"]

    def test_storage_failure_does_not_block_submit(self, owner):
        async def run():
            p = participant_for(owner, store=UnwritableStore())
            await p.host(CATALOG)
            p.scan("A1")
            await p.drain()
            return p

        p = asyncio.run(run())
        assert owner.sessions["K7M2QX"].ledger.to_list() == ["A1"]
        assert p.pending == []
        assert p.sync_state == SYNC_SYNCED
        assert CAPABILITY_HINTS["storage"] in p.messages

    def test_restore_after_restart(self, owner):
        store = InMemoryKeyValueStore()

        async def run():
            p = participant_for(owner, store=store)
            await p.host(CATALOG)
            p.sync.offline = True
            p.scan("C3")
            await p.drain()

            restarted = participant_for(owner, store=store)
            restored = restarted.restore()
            await restarted.sync_once()
            return restored, restarted

        restored, restarted = asyncio.run(run())
        assert restored.id == "K7M2QX"
        assert restarted.is_host
        assert restarted.pending == []
        assert owner.sessions["K7M2QX"].ledger.to_list() == ["C3"]


# =============================================================================
# Pushed events
# =============================================================================

class TestEvents:
    def test_push_events_update_replica(self, owner):
        async def run():
            p = participant_for(owner)
            await p.host(CATALOG)
            p.sync._emit("scan-applied", {"code": "B2", "outcome": "accepted"})
            p.sync._emit("participants", {"count": 3})
            return p

        p = asyncio.run(run())
        assert p.session.ledger.to_list() == ["B2"]
        assert p.participant_count == 3

    def test_catalog_updated_event(self, owner):
        async def run():
            p = participant_for(owner)
            await p.host(CATALOG)
            p.scan("A1")
            await p.drain()
            new_catalog = build_catalog([{"Code": "Q1", "Qty": 2}])
            p.sync._emit("catalog-updated", {
                "catalog": new_catalog.to_dict(), "scannedCodes": [], "mode": "multiset",
            })
            return p

        p = asyncio.run(run())
        assert p.session.catalog.contains("Q1")
        assert p.session.ledger.to_list() == []
        assert p.session.mode.value == "multiset"

    def test_disconnect_marks_pending(self, owner):
        async def run():
            p = participant_for(owner)
            await p.host(CATALOG)
            p.sync._emit("disconnected", {})
            return p

        assert asyncio.run(run()).sync_state == SYNC_PENDING


class TestPolling:
    def test_poll_loop_picks_up_remote_scans(self, owner):
        async def run():
            a = Participant(FakeSynchronizer(owner), poll_interval=0.01)
            b = participant_for(owner)
            await a.host(CATALOG)
            await b.join("K7M2QX")
            b.scan("B2")
            await b.drain()
            await asyncio.sleep(0.1)
            ledger = a.session.ledger.to_list()
            await a.close()
            return ledger, a

        ledger, a = asyncio.run(run())
        assert ledger == ["B2"]
        assert a.sync.closed

    def test_auto_sync_off_does_not_poll(self, owner):
        async def run():
            p = participant_for(owner)
            await p.host(CATALOG)
            return p._poll_task

        assert asyncio.run(run()) is None

"""
Tests for SessionService over both session stores.

The same behaviour is expected from the SQLite store (REST deployment) and
the in-memory store (relay hub).
"""
import pytest

from backend.core.sessions import SessionService
from backend.core.store import InMemorySessionStore, SQLiteSessionStore
from backend.core.worker import purge_expired_sessions
from tally.reconcile.catalog import build_catalog
from tally.reconcile.classifier import ScanOutcome
from tally.reconcile.errors import CodeSpaceExhausted, InvalidInput, SessionNotFound
from tally.reconcile.models import Catalog, ScanMode


CATALOG = build_catalog([{"Code": "A1"}, {"Code": "B2"}])


@pytest.fixture(params=["sqlite", "memory"])
def any_service(request, service, memory_service):
    """Parametrized over both stores."""
    return service if request.param == "sqlite" else memory_service


# ============================================================================
# Lifecycle
# ============================================================================

class TestCreate:
    def test_create_and_get(self, any_service):
        session = any_service.create_session(CATALOG)
        fetched = any_service.get_session(session.id)
        assert fetched.id == session.id
        assert fetched.catalog == CATALOG
        assert fetched.mode == ScanMode.SET
        assert fetched.expires_at == session.created_at + 60_000

    def test_empty_catalog_rejected(self, any_service):
        with pytest.raises(InvalidInput):
            any_service.create_session(Catalog())

    def test_collisions_retry(self, any_service):
        codes = iter(["AAAAAA", "AAAAAA", "AAAAAA", "BBBBBB"])
        any_service.code_generator = lambda: next(codes)
        first = any_service.create_session(CATALOG)
        second = any_service.create_session(CATALOG)
        assert (first.id, second.id) == ("AAAAAA", "BBBBBB")

    def test_code_space_exhausted(self, any_service):
        any_service.code_generator = lambda: "AAAAAA"
        any_service.attempts = 3
        any_service.create_session(CATALOG)
        with pytest.raises(CodeSpaceExhausted):
            any_service.create_session(CATALOG)

    def test_expired_code_can_be_reused(self, any_service, clock):
        any_service.code_generator = lambda: "AAAAAA"
        any_service.create_session(CATALOG)
        clock.advance(61)
        assert any_service.create_session(CATALOG).id == "AAAAAA"

    def test_scan_mode_override(self, service):
        service.scan_mode = "multiset"
        assert service.create_session(CATALOG).mode == ScanMode.MULTISET

    def test_open_session(self, any_service):
        opened = any_service.open_session("k7m2qx")
        assert opened.id == "K7M2QX"
        assert len(opened.catalog) == 0
        assert any_service.open_session("K7M2QX").id == "K7M2QX"

    def test_clear(self, any_service):
        session = any_service.create_session(CATALOG)
        assert any_service.clear_session(session.id) is True
        assert any_service.clear_session(session.id) is False
        with pytest.raises(SessionNotFound):
            any_service.get_session(session.id)


# ============================================================================
# Scans
# ============================================================================

class TestScans:
    def test_submit_records_once(self, any_service):
        session = any_service.create_session(CATALOG)
        assert any_service.submit_scan(session.id, "A1").outcome == ScanOutcome.ACCEPTED
        assert any_service.submit_scan(session.id, "A1").outcome == ScanOutcome.DUPLICATE
        assert any_service.get_session(session.id).ledger.to_list() == ["A1"]

    def test_rejected_scan_does_not_refresh_ttl(self, any_service, clock):
        session = any_service.create_session(CATALOG)
        clock.advance(30)
        any_service.submit_scan(session.id, "")
        assert any_service.get_session(session.id).expires_at == session.expires_at

    def test_replace_catalog(self, any_service):
        session = any_service.create_session(CATALOG)
        any_service.submit_scan(session.id, "A1")
        replaced = any_service.replace_catalog(session.id, build_catalog([{"Code": "Z9", "Qty": 3}]))
        assert len(replaced.ledger) == 0
        assert replaced.mode == ScanMode.MULTISET

    def test_scan_unknown_session(self, any_service):
        with pytest.raises(SessionNotFound):
            any_service.submit_scan("ZZZZZZ", "A1")

    def test_stats(self, any_service):
        session = any_service.create_session(CATALOG)
        any_service.submit_scan(session.id, "A1")
        any_service.submit_scan(session.id, "Q7")
        assert any_service.stats(session.id) == {
            "total": 2, "scanned": 1, "pending": 1, "surplus": 1, "percentage": 50,
        }


# ============================================================================
# Purge
# ============================================================================

class TestPurge:
    def test_purge_expired(self, any_service, clock):
        any_service.create_session(CATALOG)
        clock.advance(30)
        live = any_service.create_session(CATALOG)
        clock.advance(31)
        assert any_service.purge_expired() == 1
        assert any_service.store.count(clock()) == 1
        assert any_service.get_session(live.id).id == live.id

    def test_worker_purges_both_stores(self, service, clock, monkeypatch):
        hub_service = SessionService(InMemorySessionStore(), clock=clock, ttl_seconds=60)

        class StubHub:
            pass

        hub = StubHub()
        hub.service = hub_service
        monkeypatch.setattr("backend.core.worker.get_session_service", lambda: service)
        monkeypatch.setattr("backend.core.worker.get_hub", lambda: hub)

        service.create_session(CATALOG)
        hub_service.create_session(CATALOG)
        clock.advance(120)
        assert purge_expired_sessions() == 2


def test_sqlite_store_round_trip(patch_db, clock):
    store = SQLiteSessionStore()
    service = SessionService(store, clock=clock, ttl_seconds=60)
    session = service.create_session(build_catalog([{"Code": 100, "When": "2026-10-19"}]))
    stored = store.get(session.id, clock())
    assert stored.catalog.items[0].code == "100"
    assert stored.catalog.items[0].attributes["When"] == "2026-10-19"


def test_store_interface():
    from backend.core.store import SessionStore

    assert SessionStore.__abstractmethods__ == {"get", "insert", "update", "delete", "purge_expired", "count"}

"""
Test configuration and fixtures for the Tally backend test suite.

Provides:
- In-memory SQLite test database (isolated per test)
- Controllable clock for TTL tests
- FastAPI TestClient fixture with fresh session service and relay hub
- Factory functions for creating test data
"""
import sqlite3
from contextlib import contextmanager
from typing import Iterable, Optional
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from backend.core.db.base import SCHEMA


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

def _create_test_db() -> sqlite3.Connection:
    """Create an in-memory SQLite database with the Tally schema."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    return conn


@contextmanager
def _test_get_db(conn: sqlite3.Connection):
    """Replacement for get_db() that uses the shared test connection."""
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


@pytest.fixture()
def test_db():
    """Provide a fresh in-memory SQLite database for each test."""
    conn = _create_test_db()
    yield conn
    conn.close()


@pytest.fixture()
def patch_db(test_db):
    """
    Patch the get_db context manager across all db modules so that
    every database call uses the in-memory test database.
    """
    cm = lambda: _test_get_db(test_db)  # noqa: E731

    with (
        patch("backend.core.db.base.get_db", cm),
        patch("backend.core.db.sessions.get_db", cm),
    ):
        yield test_db


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Epoch-ms clock that only moves when a test advances it."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture()
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Services and app
# ---------------------------------------------------------------------------

@pytest.fixture()
def service(patch_db, clock):
    """SessionService over the patched SQLite store with a 60 second TTL."""
    from backend.core.sessions import SessionService
    from backend.core.store import SQLiteSessionStore

    return SessionService(SQLiteSessionStore(), clock=clock, ttl_seconds=60, scan_mode="auto")


@pytest.fixture()
def memory_service(clock):
    """SessionService over an in-memory store, as the relay hub uses."""
    from backend.core.sessions import SessionService
    from backend.core.store import InMemorySessionStore

    return SessionService(InMemorySessionStore(), clock=clock, ttl_seconds=60, scan_mode="auto")


@pytest.fixture()
def hub(memory_service):
    from backend.core.hub import RelayHub

    return RelayHub(memory_service, grace_seconds=0.05)


@pytest.fixture()
def client(service, hub):
    """
    Provide a FastAPI TestClient with the database patched.

    Skips the lifespan side effects (schema init, worker start/stop) and
    swaps the process-wide service and hub for per-test instances.
    """
    from backend.api.main import app
    from backend.core.hub import get_hub
    from backend.core.sessions import get_session_service

    app.dependency_overrides[get_session_service] = lambda: service
    app.dependency_overrides[get_hub] = lambda: hub

    # Disable lifespan so worker doesn't start during tests
    with patch("backend.api.main.init_db"), \
         patch("backend.api.main.init_worker"), \
         patch("backend.api.main.stop_scheduler"), \
         patch("backend.api.main.get_hub", lambda: hub):
        with TestClient(app) as c:
            yield c

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------

def catalog_rows(codes: Iterable[str], quantities: Optional[dict] = None) -> list:
    """Spreadsheet rows as the host uploads them."""
    rows = []
    for i, code in enumerate(codes):
        row = {"Code": code, "Description": f"Item {i + 1}", "Location": f"Shelf {i + 1}"}
        if quantities is not None:
            row["Qty"] = quantities.get(code)
        rows.append(row)
    return rows


def create_session(client: TestClient, codes: Iterable[str] = ("A1", "B2"), **kwargs) -> str:
    """Upload a catalog through the API and return the session code."""
    resp = client.post("/api/upload", json={"catalog": catalog_rows(codes, **kwargs)})
    assert resp.status_code == 200, resp.text
    return resp.json()["code"]


@pytest.fixture()
def make_session(client):
    """Factory fixture: make_session(codes=..., quantities=...) -> session code."""
    def _make(codes: Iterable[str] = ("A1", "B2"), **kwargs) -> str:
        return create_session(client, codes, **kwargs)
    return _make

"""
Unit tests for the HTTP API.

Runs the real FastAPI app (TestClient) over an in-memory SQLite store.
Lifespan disposes the engine on exit, so every assertion happens inside
the `with TestClient(...)` block.
"""

import time
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from sysinv.services.api.main import create_app
from sysinv.services.collector import queries
from sysinv.services.collector.poller import PollerStats, SnapshotPoller
from sysinv.services.shared.config import Settings
from sysinv.services.shared.database import make_engine, make_session_factory
from sysinv.services.store.history import HistoryReader
from sysinv.services.store.reconciler import ReconciliationStore

from factories import make_app, make_snapshot

SETTINGS = Settings(database_url="sqlite:///:memory:", query_interval_seconds=3600)


@pytest.fixture
def app(engine, store, history):
    return create_app(SETTINGS, engine, store, history)


class IdlePoller:
    """Stands in for SnapshotPoller: no collection, just stats."""

    def __init__(self):
        self.interval_seconds = 3600
        self.stats = PollerStats(ticks=4, failures=1, last_outcome="unchanged")
        self.source = object()

    async def run(self, stop):
        await stop.wait()


class StaticSource:
    def run(self, sql):
        if sql == queries.OS_VERSION:
            return [{"name": "macOS", "version": "14.1", "platform": "darwin"}]
        if sql == queries.OSQUERY_VERSION:
            return [{"version": "5.10.2"}]
        return [
            {"name": "Safari", "path": "/Applications/Safari.app", "bundle_identifier": "com.apple.Safari",
             "last_opened_time": "1700000000"},
        ]


# ── /api/latest_data ─────────────────────────────────────────────────────────

def test_latest_data_before_first_collection_is_503_initializing(app):
    with TestClient(app) as client:
        resp = client.get("/api/latest_data")

        assert resp.status_code == 503
        assert resp.json()["status"] == "initializing"
        assert resp.headers["retry-after"] == "5"
        assert resp.headers["cache-control"] == "public, max-age=5"


def test_latest_data_shape(app, store):
    store.reconcile(make_snapshot(apps=[
        make_app("Safari", last_opened_time=1700000000.0),
        make_app("Xcode",  last_opened_time=1700000500.0),
    ]))

    with TestClient(app) as client:
        resp = client.get("/api/latest_data")

        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-cache"
        body = resp.json()
        assert body["os_version"] == {"name": "macOS", "version": "14.1", "platform": "darwin"}
        assert body["osquery_version"] == "5.10.2"
        assert body["last_updated"].startswith("2024-01-01T00:00:00")
        assert [a["name"] for a in body["installed_apps"]] == ["Xcode", "Safari"]
        safari = body["installed_apps"][1]
        assert safari["bundle_identifier"] == "com.example.safari"
        assert safari["last_opened_time"] == 1700000000.0
        assert safari["end_time"] is None


def test_latest_data_reflects_replaced_set(app, store):
    store.reconcile(make_snapshot(apps=[make_app("Safari"), make_app("Xcode")]))
    store.reconcile(make_snapshot(apps=[make_app("Safari", bundle_short_version="17.1")]))

    with TestClient(app) as client:
        apps = client.get("/api/latest_data").json()["installed_apps"]

        assert len(apps) == 1
        assert apps[0]["bundle_short_version"] == "17.1"


# ── history routes ────────────────────────────────────────────────────────────

def test_snapshot_at_past_instant(app, store):
    store.reconcile(make_snapshot(os_version="14.1"))
    store.reconcile(make_snapshot(os_version="14.2"))

    with TestClient(app) as client:
        before = client.get("/api/snapshot", params={"at": "2024-01-01T00:00:00Z"})
        after  = client.get("/api/snapshot", params={"at": "2024-06-01T00:00:00Z"})
        empty  = client.get("/api/snapshot", params={"at": "2023-01-01T00:00:00Z"})

        assert before.json()["os_version"]["version"] == "14.1"
        assert after.json()["os_version"]["version"] == "14.2"
        assert empty.status_code == 503


def test_snapshot_requires_a_valid_instant(app):
    with TestClient(app) as client:
        assert client.get("/api/snapshot").status_code == 422
        assert client.get("/api/snapshot", params={"at": "yesterday"}).status_code == 422


def test_generations_listing(app, store):
    store.reconcile(make_snapshot(os_version="14.1"))
    store.reconcile(make_snapshot(os_version="14.2", apps=[make_app("Notes")]))

    with TestClient(app) as client:
        gens = client.get("/api/generations").json()

        assert [g["os_version"] for g in gens] == ["14.2", "14.1"]
        assert [g["active_apps"] for g in gens] == [1, 2]


def test_generation_history(app, store):
    gen = store.reconcile(make_snapshot(apps=[make_app("Safari")]))
    store.reconcile(make_snapshot(apps=[make_app("Safari", display_name="Safari 2")]))

    with TestClient(app) as client:
        rows = client.get(f"/api/generations/{gen.generation_id}/history").json()

        assert [r["display_name"] for r in rows] == ["Safari 2", "Safari"]
        assert rows[0]["end_time"] is None
        assert isinstance(rows[1]["end_time"], float)


def test_generation_history_unknown_is_404(app):
    with TestClient(app) as client:
        resp = client.get("/api/generations/999/history")

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Generation not found"


# ── status routes ─────────────────────────────────────────────────────────────

def test_banner_lists_endpoints(app):
    with TestClient(app) as client:
        resp = client.get("/")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "GET /api/latest_data" in resp.text
        assert "GET /health" in resp.text


def test_health_ok(app):
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "healthy"}


def test_health_database_down(tmp_path, store, history):
    broken = make_engine(f"sqlite:///{tmp_path}/missing-dir/sysinv.db")
    app = create_app(SETTINGS, broken, store, history)

    # no lifespan: table creation would fail against the broken engine
    client = TestClient(app)
    resp = client.get("/health")

    assert resp.status_code == 503
    assert resp.json() == {"status": "unhealthy", "error": "Database connection failed"}


def test_status_without_data(app):
    with TestClient(app) as client:
        body = client.get("/status").json()

        assert body["database"]["status"] == "connected"
        assert body["database"]["dialect"] == "sqlite"
        assert body["database"]["lastDataUpdate"] == "no data collected yet"
        assert "uptime" in body["status"]
        assert body["build"]["pythonVersion"]
        assert "collector" not in body


def test_status_reports_last_update_and_collector(engine, store, history):
    store.reconcile(make_snapshot())
    app = create_app(SETTINGS, engine, store, history, poller=IdlePoller())

    with TestClient(app) as client:
        body = client.get("/status").json()

        assert body["database"]["lastDataUpdate"].startswith("2024-01-01T00:00:00")
        assert body["collector"]["ticks"] == 4
        assert body["collector"]["failures"] == 1
        assert body["collector"]["last_outcome"] == "unchanged"
        assert body["collector"]["interval"] == 3600


# ── middleware / lifecycle ────────────────────────────────────────────────────

def test_cors_allows_configured_origin(app):
    with TestClient(app) as client:
        resp = client.get("/health", headers={"Origin": "http://localhost:3000"})

        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_unhandled_error_becomes_500(engine, history):
    class ExplodingStore:
        def read_latest(self):
            raise RuntimeError("boom")

    app = create_app(SETTINGS, engine, ExplodingStore(), history)

    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.get("/api/latest_data")

        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal Server Error"}


def test_lifespan_runs_poller_and_serves_its_data(tmp_path):
    # file database: the poller thread and request threads use separate connections
    engine   = make_engine(f"sqlite:///{tmp_path}/sysinv.db")
    sessions = make_session_factory(engine)
    store    = ReconciliationStore(sessions)
    poller   = SnapshotPoller(StaticSource(), store, interval_seconds=3600, fetch_timeout_seconds=5)
    app      = create_app(SETTINGS, engine, store, HistoryReader(sessions), poller=poller)

    with TestClient(app) as client:
        deadline = time.monotonic() + 5
        resp = client.get("/api/latest_data")
        while resp.status_code == 503 and time.monotonic() < deadline:
            time.sleep(0.05)
            resp = client.get("/api/latest_data")

        assert resp.status_code == 200
        assert [a["name"] for a in resp.json()["installed_apps"]] == ["Safari"]

    # shutdown waited for the loop to exit cleanly
    assert poller.stats.ticks == 1
    assert poller.stats.failures == 0


def test_idle_poller_is_awaited_on_shutdown():
    poller = IdlePoller()
    done = []

    async def run(stop):
        await stop.wait()
        done.append(True)

    poller.run = run
    app = create_app(SETTINGS, make_engine("sqlite:///:memory:"), None, None, poller=poller)

    with TestClient(app):
        assert done == []

    assert done == [True]


def test_shutdown_closes_the_fact_source():
    closed = []
    poller = IdlePoller()
    poller.source = SimpleNamespace(close=lambda: closed.append(True))
    app = create_app(SETTINGS, make_engine("sqlite:///:memory:"), None, None, poller=poller)

    with TestClient(app):
        assert closed == []

    assert closed == [True]

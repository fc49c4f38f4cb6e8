"""
Unit tests for the snapshot poller.

Fact source and store are in-memory fakes; each test drives the coroutine
with asyncio.run() so no event-loop plugin is needed.
"""

import asyncio
import threading
import time
from datetime import datetime, timezone

from sysinv.services.collector import queries
from sysinv.services.collector.poller import SnapshotPoller
from sysinv.services.shared.errors import FactSourceError, TransactionFailed
from sysinv.services.shared.snapshot import ReconcileOutcome, ReconcileResult


class FakeSource:
    def __init__(self, os_rows=None, delay: float = 0.0, error: Exception | None = None):
        self.os_rows = [{"name": "macOS", "version": "14.1", "platform": "darwin"}] if os_rows is None else os_rows
        self.delay = delay
        self.error = error
        self.queries = 0

    def run(self, sql):
        self.queries += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if sql == queries.OS_VERSION:
            return self.os_rows
        if sql == queries.OSQUERY_VERSION:
            return [{"version": "5.10.2"}]
        return [{"name": "Safari", "path": "/Applications/Safari.app", "bundle_identifier": "com.apple.Safari"}]


class FakeStore:
    def __init__(self, fail_times: int = 0):
        self.snapshots = []
        self.fail_times = fail_times
        self.lock = threading.Lock()

    def reconcile(self, snapshot):
        with self.lock:
            self.snapshots.append(snapshot)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise TransactionFailed("simulated rollback")
            return ReconcileResult(
                outcome=ReconcileOutcome.created,
                generation_id=1,
                reconciled_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
                inserted=len(snapshot.applications),
            )


def make_poller(source, store, interval=60, fetch_timeout=5) -> SnapshotPoller:
    return SnapshotPoller(source, store, interval_seconds=interval, fetch_timeout_seconds=fetch_timeout)


# ── tick ──────────────────────────────────────────────────────────────────────

def test_tick_reconciles_assembled_snapshot():
    store  = FakeStore()
    poller = make_poller(FakeSource(), store)

    result = asyncio.run(poller.tick())

    assert result.outcome == ReconcileOutcome.created
    assert len(store.snapshots) == 1
    snap = store.snapshots[0]
    assert snap.identity.as_tuple() == ("macOS", "14.1", "darwin", "5.10.2")
    assert snap.applications[0].name == "Safari"
    assert poller.stats.ticks == 1
    assert poller.stats.failures == 0
    assert poller.stats.last_outcome == "created"
    assert poller.stats.last_duration_ms is not None


def test_tick_skips_reconcile_when_identity_missing():
    store  = FakeStore()
    poller = make_poller(FakeSource(os_rows=[]), store)

    result = asyncio.run(poller.tick())

    assert result is None
    assert store.snapshots == []
    assert poller.stats.failures == 1
    assert "OS version" in poller.stats.last_error


def test_tick_survives_fact_source_error():
    store  = FakeStore()
    poller = make_poller(FakeSource(error=FactSourceError("socket closed")), store)

    result = asyncio.run(poller.tick())

    assert result is None
    assert store.snapshots == []
    assert poller.stats.last_error == "socket closed"


def test_tick_fetch_timeout_never_reaches_store():
    store  = FakeStore()
    poller = make_poller(FakeSource(delay=0.3), store, fetch_timeout=0.05)

    result = asyncio.run(poller.tick())

    assert result is None
    assert store.snapshots == []
    assert poller.stats.failures == 1
    assert "exceeded" in poller.stats.last_error


def test_tick_survives_store_failure_and_next_tick_succeeds():
    store  = FakeStore(fail_times=1)
    poller = make_poller(FakeSource(), store)

    async def two_ticks():
        return await poller.tick(), await poller.tick()

    first, second = asyncio.run(two_ticks())

    assert first is None
    assert second.outcome == ReconcileOutcome.created
    assert poller.stats.ticks == 2
    assert poller.stats.failures == 1
    assert poller.stats.last_error is None


def test_tick_survives_unexpected_exception():
    store  = FakeStore()
    poller = make_poller(FakeSource(error=RuntimeError("boom")), store)

    result = asyncio.run(poller.tick())

    assert result is None
    assert poller.stats.last_error == "boom"


# ── run loop ──────────────────────────────────────────────────────────────────

def test_run_ticks_immediately_then_on_interval_until_stopped():
    store  = FakeStore()
    poller = make_poller(FakeSource(), store, interval=0.01)

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(poller.run(stop))
        while len(store.snapshots) < 3:
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

    asyncio.run(scenario())

    assert poller.stats.ticks >= 3
    assert len(store.snapshots) >= 3


def test_run_with_stop_already_set_ticks_once():
    store  = FakeStore()
    poller = make_poller(FakeSource(), store, interval=60)

    async def scenario():
        stop = asyncio.Event()
        stop.set()
        await asyncio.wait_for(poller.run(stop), timeout=2)

    asyncio.run(scenario())

    assert poller.stats.ticks == 1
    assert len(store.snapshots) == 1


def test_run_keeps_going_after_failures():
    store  = FakeStore(fail_times=2)
    poller = make_poller(FakeSource(), store, interval=0.01)

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(poller.run(stop))
        while poller.stats.last_outcome is None:
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

    asyncio.run(scenario())

    assert poller.stats.failures == 2
    assert poller.stats.last_outcome == "created"

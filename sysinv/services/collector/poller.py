"""
Snapshot Poller
----------------
Cooperative background task started during the API lifespan:

  run(stop)  one tick immediately, then one tick per interval until `stop` is set
  tick()     fetch + assemble (bounded by fetch_timeout) → reconcile

Ticks run strictly one after another, so at most one reconcile() is in flight.
A fetch that times out is abandoned before any transaction is opened.
Every failure is logged and the loop moves on to the next tick.
On shutdown the caller sets `stop` and awaits run(); a reconcile already in
its worker thread is left to commit or roll back on its own.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from sysinv.services.collector.assembler import FactSource, collect_snapshot
from sysinv.services.shared.errors import (
    FactSourceError, FactSourceTimeout, MissingIdentityFacts, SysinvError,
)
from sysinv.services.shared.models import utcnow
from sysinv.services.shared.snapshot import ReconcileResult


@dataclass
class PollerStats:
    ticks:            int                = 0
    failures:         int                = 0
    last_outcome:     Optional[str]      = None
    last_error:       Optional[str]      = None
    last_tick_at:     Optional[datetime] = None
    last_duration_ms: Optional[float]    = None


class SnapshotPoller:
    def __init__(
        self,
        source: FactSource,
        store,
        interval_seconds: float,
        fetch_timeout_seconds: float,
        log=None,
    ):
        self.source                = source
        self.store                 = store
        self.interval_seconds      = interval_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.log                   = log if log is not None else structlog.get_logger().bind(component="poller")
        self.stats                 = PollerStats()

    async def _fetch(self):
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, collect_snapshot, self.source),
                timeout=self.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise FactSourceTimeout(
                f"fact collection exceeded {self.fetch_timeout_seconds}s"
            ) from exc

    async def tick(self) -> ReconcileResult | None:
        """One collection cycle. Returns the reconcile result, or None if the cycle was skipped."""
        started = time.monotonic()
        self.stats.ticks += 1
        self.stats.last_tick_at = utcnow()
        try:
            snapshot = await self._fetch()
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self.store.reconcile, snapshot)
        except MissingIdentityFacts as exc:
            self._record_failure("missing_identity_facts", exc, warning=True)
            return None
        except FactSourceError as exc:
            self._record_failure("fact_collection_failed", exc)
            return None
        except SysinvError as exc:
            self._record_failure("reconcile_failed", exc)
            return None
        except Exception as exc:  # noqa: BLE001 - a failed cycle must never stop future cycles
            self.log.exception("collection_cycle_error")
            self.stats.failures += 1
            self.stats.last_error = str(exc)
            return None
        finally:
            self.stats.last_duration_ms = round((time.monotonic() - started) * 1000, 2)

        self.stats.last_outcome = result.outcome.value
        self.stats.last_error = None
        return result

    def _record_failure(self, event: str, exc: Exception, warning: bool = False) -> None:
        self.stats.failures += 1
        self.stats.last_error = str(exc)
        if warning:
            self.log.warning(event, error=str(exc))
        else:
            self.log.error(event, error=str(exc), error_type=type(exc).__name__)

    async def run(self, stop: asyncio.Event) -> None:
        """Long-running coroutine. Started during FastAPI lifespan."""
        self.log.info("poller_started", interval=self.interval_seconds)
        await self.tick()
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.tick()
        self.log.info("poller_stopped", ticks=self.stats.ticks)

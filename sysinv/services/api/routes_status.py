"""
Service health and status routes.

GET /         plain-text banner with the endpoint list
GET /health   DB round-trip; 503 when the database is unreachable
GET /status   uptime, DB pool counters, last data update, runtime + poller stats
"""

import os
import platform
import sys
import threading
from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sysinv.services.shared.database import ping, pool_stats
from sysinv.services.shared.schemas import as_utc
from sysinv.services.store.reconciler import ReconciliationStore

BANNER = """\
 =================================================================
                   System Information Monitor
 =================================================================

 Available Endpoints:
 -------------------
 GET /api/latest_data                  -> Latest system information
                                          - OS version
                                          - osquery version
                                          - Installed applications
 GET /api/snapshot?at=<ISO-8601>       -> System information as of a past instant
 GET /api/generations                  -> Every recorded OS / osquery generation
 GET /api/generations/{id}/history     -> Full application history of one generation

 System Status:
 -------------
 GET /health                           -> Basic health check
 GET /status                           -> Detailed system status

 =================================================================
"""


def _uptime(started_at: datetime) -> str:
    seconds = int((datetime.now(timezone.utc) - started_at).total_seconds())
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours}h{minutes}m{secs}s"


def build_router(engine: Engine, store: ReconciliationStore, poller=None) -> APIRouter:
    router = APIRouter()
    started_at = datetime.now(timezone.utc)

    @router.get("/", response_class=PlainTextResponse)
    def welcome():
        return BANNER

    @router.get("/health")
    def health():
        try:
            ping(engine)
        except SQLAlchemyError:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "error": "Database connection failed"},
            )
        return {"status": "healthy"}

    @router.get("/status")
    def status():
        db_status = "connected"
        try:
            ping(engine)
        except SQLAlchemyError:
            db_status = "disconnected"

        last_update = "no data collected yet"
        if db_status == "connected":
            try:
                ts = store.last_updated()
                if ts is not None:
                    last_update = as_utc(ts).isoformat()
            except SQLAlchemyError:
                last_update = "unavailable"

        body = {
            "status": {
                "uptime":    _uptime(started_at),
                "startTime": started_at.isoformat(),
                "threads":   threading.active_count(),
            },
            "database": {
                "status":         db_status,
                "dialect":        engine.dialect.name,
                "lastDataUpdate": last_update,
                "pool":           pool_stats(engine),
            },
            "build": {
                "pythonVersion": platform.python_version(),
                "runtime":       sys.implementation.name,
                "os":            platform.system(),
                "arch":          platform.machine(),
                "cpus":          os.cpu_count(),
            },
        }
        if poller is not None:
            stats = asdict(poller.stats)
            if stats["last_tick_at"] is not None:
                stats["last_tick_at"] = stats["last_tick_at"].isoformat()
            body["collector"] = {"interval": poller.interval_seconds, **stats}
        return body

    return router

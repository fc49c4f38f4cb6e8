"""
sysinv API Service (port 7070)
-------------------------------
Serves the latest and historical host facts from the reconciliation store and
runs the osquery collection loop as a background task:
  - one collection at startup, then every QUERY_INTERVAL seconds
  - shutdown waits for an in-flight reconciliation to finish

create_app() takes every collaborator explicitly; build_app() wires them from
the environment for `uvicorn --factory` and `python -m sysinv.services.api`.
"""

import asyncio
import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from sysinv.services.api import routes_latest, routes_status
from sysinv.services.shared.config import Settings, load_settings
from sysinv.services.shared.database import create_all_tables, make_engine, make_session_factory
from sysinv.services.shared.logging_setup import configure_logging
from sysinv.services.store.history import HistoryReader
from sysinv.services.store.reconciler import ReconciliationStore

VERSION = "0.1.0"


def create_app(
    settings: Settings,
    engine: Engine,
    store: ReconciliationStore,
    history: HistoryReader,
    poller=None,
    log=None,
) -> FastAPI:
    log = log if log is not None else structlog.get_logger().bind(component="api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("sysinv_api_starting", version=VERSION)
        create_all_tables(engine)
        log.info("sysinv_tables_ready")

        stop = asyncio.Event()
        poll_task = None
        if poller is not None:
            poll_task = asyncio.create_task(poller.run(stop))
            log.info("collector_loop_started", interval=settings.query_interval_seconds)

        yield

        stop.set()
        if poll_task is not None:
            # not cancelled: let the current tick finish its transaction
            await poll_task
            close_source = getattr(poller.source, "close", None)
            if callable(close_source):
                # bounded wait: an abandoned fetch may still hold the connection
                await asyncio.get_running_loop().run_in_executor(None, close_source)
        engine.dispose()
        log.info("sysinv_api_stopping")

    app = FastAPI(
        title="sysinv",
        version=VERSION,
        description="Latest and historical OS / osquery / installed-application facts for this host.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        log.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
            user_agent=request.headers.get("user-agent", ""),
        )
        return response

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        log.error("unhandled_request_error", path=request.url.path, method=request.method, error=str(exc))
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    app.include_router(routes_status.build_router(engine, store, poller), tags=["Status"])
    app.include_router(routes_latest.build_router(store, history), prefix="/api", tags=["System"])
    return app


def build_app(settings: Settings | None = None) -> FastAPI:
    """Wire the real engine, osquery source and poller from settings."""
    from sysinv.services.collector.fact_source import OsqueryFactSource
    from sysinv.services.collector.poller import SnapshotPoller

    settings = settings or load_settings()
    log = configure_logging(settings)

    if ":memory:" in settings.database_url:
        log.warning("in_memory_database", detail="readers share the writer connection and are not isolated")
    engine   = make_engine(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    sessions = make_session_factory(engine)
    store    = ReconciliationStore(sessions, log=log.bind(component="store"))
    history  = HistoryReader(sessions)
    source   = OsqueryFactSource(
        settings.osquery_socket,
        open_timeout=settings.osquery_timeout_seconds,
        query_timeout=settings.fact_fetch_timeout_seconds,
        log=log.bind(component="fact_source"),
    )
    poller = SnapshotPoller(
        source,
        store,
        interval_seconds=settings.query_interval_seconds,
        fetch_timeout_seconds=settings.fact_fetch_timeout_seconds,
        log=log.bind(component="poller"),
    )
    return create_app(settings, engine, store, history, poller=poller, log=log.bind(component="api"))

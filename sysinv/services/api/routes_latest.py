"""
Read routes over the reconciliation store.

GET /api/latest_data                   current generation + active apps
GET /api/snapshot?at=<ISO-8601>        state as of a past instant
GET /api/generations                   all generations, newest first
GET /api/generations/{id}/history      every app row of one generation

The router is built per app with the store and history reader passed in,
so handlers hold direct references instead of looking them up per request.

"Nothing persisted yet" is answered with 503 {"status": "initializing"} plus
Retry-After, so clients and caches can tell it apart from real failures.
"""

from datetime import datetime

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from sysinv.services.shared.schemas import (
    AppHistoryOut, GenerationOut, InitializingOut, LatestDataOut,
)
from sysinv.services.shared.snapshot import NotReady
from sysinv.services.store.history import HistoryReader
from sysinv.services.store.reconciler import ReconciliationStore

INITIALIZING_RETRY_SECONDS = 5


def _initializing() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=InitializingOut().model_dump(),
        headers={
            "Retry-After":   str(INITIALIZING_RETRY_SECONDS),
            "Cache-Control": f"public, max-age={INITIALIZING_RETRY_SECONDS}",
        },
    )


def build_router(store: ReconciliationStore, history: HistoryReader) -> APIRouter:
    router = APIRouter()

    @router.get(
        "/latest_data",
        response_model=LatestDataOut,
        responses={503: {"model": InitializingOut}},
    )
    def latest_data():
        view = store.read_latest()
        if isinstance(view, NotReady):
            return _initializing()
        body = LatestDataOut.from_view(view)
        return JSONResponse(content=body.model_dump(mode="json"), headers={"Cache-Control": "no-cache"})

    @router.get(
        "/snapshot",
        response_model=LatestDataOut,
        responses={503: {"model": InitializingOut}},
    )
    def snapshot_at(at: datetime):
        view = history.read_as_of(at)
        if isinstance(view, NotReady):
            return _initializing()
        return LatestDataOut.from_view(view)

    @router.get("/generations", response_model=list[GenerationOut])
    def list_generations():
        return [GenerationOut.from_summary(g) for g in history.list_generations()]

    @router.get("/generations/{generation_id}/history", response_model=list[AppHistoryOut])
    def generation_history(generation_id: int):
        rows = history.read_generation_history(generation_id)
        if rows is None:
            raise HTTPException(status_code=404, detail="Generation not found")
        return [AppHistoryOut.from_view(r) for r in rows]

    return router

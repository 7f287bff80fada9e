"""Sync endpoints: backup import/export, QR payloads, progress streams.

Runs are validated and started before the response starts, so a malformed
payload is a plain 422 and a second run is a plain 409. The run itself is a
background job; the response only follows it, and a client that goes away
(or never reads) leaves it running. Progress arrives as server-sent events:

    event: progress   {"current": 4, "total": 9}
    event: complete   {"total": 9, "fetched": 8, "skipped": 1, "failed": [...]}
    event: error      {"detail": "..."}
"""

import httpx
import json
import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from airdate.api.deps import get_engine, get_store
from airdate.errors import AirdateError
from airdate.models.domain import UserProfile
from airdate.services import backup_codec
from airdate.services.backup_codec import RestorePlan
from airdate.services.entity_store import EntityStore
from airdate.services.sync_engine import SyncEngine, SyncJob

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncPayloadIn(BaseModel):
    payload: str


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, separators=(',', ':'))}\n\n"


def progress_stream(engine: SyncEngine, job: SyncJob) -> StreamingResponse:
    async def agen():
        try:
            async for progress in job.updates():
                yield _sse("progress", {"current": progress.current, "total": progress.total})
        except AirdateError as e:
            logger.debug(f"Sync stream ended with an error: {e}")
            yield _sse("error", {"detail": str(e), "type": type(e).__name__})
            return

        report = engine.last_report
        yield _sse("complete", {
            "total": report.total if report else 0,
            "fetched": report.fetched if report else 0,
            "skipped": report.skipped_count if report else 0,
            "failed": report.failed_keys if report else [],
        })

    return StreamingResponse(agen(), media_type="text/event-stream")


def _ensure_idle(engine: SyncEngine) -> None:
    if engine.is_running:
        raise HTTPException(409, "A sync run is already in progress")


@router.get("/sync/estimate")
async def estimate(count: int = Query(..., ge=0), engine: SyncEngine = Depends(get_engine)):
    """Upfront duration notice for a run over `count` items."""
    return {
        "count": count,
        "estimate": SyncEngine.estimate(count, engine.batch_size, engine.limiter.delay),
    }


@router.get("/sync/status")
async def status(engine: SyncEngine = Depends(get_engine)):
    report = engine.last_report
    return {
        "running": engine.is_running,
        "last_run": None if report is None else {
            "total": report.total,
            "fetched": report.fetched,
            "skipped": report.skipped_count,
            "failed": report.failed_keys,
            "completed": report.completed,
        },
    }


@router.get("/sync/stream")
async def follow(engine: SyncEngine = Depends(get_engine)):
    """Re-attach to the current (or last) run: replays its events, then follows it."""
    if engine.job is None:
        raise HTTPException(404, "No sync run has been started")
    return progress_stream(engine, engine.job)


@router.post("/sync/import")
async def import_backup(
    request: Request,
    mode: str = Query("replace", pattern="^(replace|merge)$"),
    engine: SyncEngine = Depends(get_engine),
):
    """Import a backup file (request body is the raw JSON).

    `replace` restores everything in the file; `merge` only adds the titles
    and lists the library does not have yet.
    """
    _ensure_idle(engine)
    raw = await request.body()
    run = engine.merge_import(raw) if mode == "merge" else engine.import_backup(raw)
    return progress_stream(engine, engine.start(run))


@router.post("/sync/preview")
async def preview(request: Request, store: EntityStore = Depends(get_store)):
    """What a merge import of the posted backup would add."""
    result = backup_codec.preview_merge(backup_codec.decode(await request.body()), store)
    return {
        "match_count": result.match_count,
        "new_shows": len(result.new_items),
        "new_lists": len(result.new_lists),
        "total_new": result.total_new,
    }


@router.post("/sync/legacy")
async def import_legacy(
    data: dict = Body(...),
    store: EntityStore = Depends(get_store),
    engine: SyncEngine = Depends(get_engine),
):
    """Pull titles out of an arbitrary older export and add them to the watchlist."""
    _ensure_idle(engine)
    items = backup_codec.scan_legacy(data, {i.key for i in store.watchlist})
    if not items:
        raise HTTPException(422, "No titles found in the uploaded file")
    logger.info(f"Legacy import found {len(items)} new titles")
    user = store.user or UserProfile(username="local")
    return progress_stream(engine, engine.start(engine.run(RestorePlan(user=user, watchlist=items))))


@router.post("/sync/payload")
async def process_payload(body: SyncPayloadIn, engine: SyncEngine = Depends(get_engine)):
    """Apply a scanned device-to-device sync string."""
    _ensure_idle(engine)
    return progress_stream(engine, engine.start(engine.process_sync_payload(body.payload)))


@router.get("/sync/payload")
async def export_payload(store: EntityStore = Depends(get_store)):
    """Compact sync string for display as a QR code."""
    return {"payload": backup_codec.encode_sync_payload(store)}


@router.post("/sync/resync")
async def resync(engine: SyncEngine = Depends(get_engine)):
    """Refetch calendar data for every tracked title."""
    _ensure_idle(engine)
    return progress_stream(engine, engine.start(engine.full_resync()))


@router.get("/backup")
async def export_backup(store: EntityStore = Depends(get_store)):
    """Download the full state as a backup file."""
    return JSONResponse(
        backup_codec.encode(store),
        headers={"Content-Disposition": 'attachment; filename="airdate-backup.json"'},
    )


# ── Cloud account ────────────────────────────────────────────────

class CloudLogin(BaseModel):
    email: str
    password: str


@router.post("/sync/cloud/login")
async def cloud_login(
    body: CloudLogin,
    store: EntityStore = Depends(get_store),
    engine: SyncEngine = Depends(get_engine),
):
    """Sign in to cloud storage; later saves go to this account."""
    if engine.storage is None:
        raise HTTPException(400, "No state storage is configured")
    try:
        user_id = await engine.storage.authenticate(body.email, body.password)
    except httpx.HTTPStatusError as e:
        raise HTTPException(401, f"Sign-in failed ({e.response.status_code})")
    except httpx.HTTPError as e:
        raise HTTPException(502, f"Cloud storage unreachable: {e}")

    tmdb_key = store.user.tmdb_key if store.user else None
    store.user = UserProfile(username=body.email, tmdb_key=tmdb_key, id=user_id)
    blob = await engine.storage.load(user_id)
    return {"user_id": user_id, "has_backup": bool(blob)}


@router.post("/sync/cloud/pull")
async def cloud_pull(store: EntityStore = Depends(get_store), engine: SyncEngine = Depends(get_engine)):
    """Restore the signed-in account's cloud copy into this library."""
    _ensure_idle(engine)
    if engine.storage is None or not (store.user and store.user.id):
        raise HTTPException(400, "Not signed in to cloud storage")
    try:
        blob = await engine.storage.load(store.user.id)
    except httpx.HTTPError as e:
        raise HTTPException(502, f"Cloud storage unreachable: {e}")
    if not blob:
        raise HTTPException(404, "No cloud backup for this account")
    return progress_stream(engine, engine.start(engine.import_backup(blob)))

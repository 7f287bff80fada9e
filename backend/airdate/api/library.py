"""Library and watch-state endpoints."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from airdate.api.deps import get_engine, get_resolver, get_store, save_state
from airdate.models.domain import (
    InteractionKey, InteractionKind, LibraryKey, MediaKind, SubscribedList,
)
from airdate.models.schemas import MediaItemSchema, SubscribedListSchema
from airdate.services import backup_codec
from airdate.services.entity_store import EntityStore
from airdate.services.reminders import ReminderResolver, Resolution
from airdate.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter()


class InteractionTarget(BaseModel):
    tmdb_id: int
    media_type: Literal["tv", "movie", "episode"]
    season_number: Optional[int] = None
    episode_number: Optional[int] = None

    def key(self) -> InteractionKey:
        kind = InteractionKind(self.media_type)
        if kind is InteractionKind.EPISODE:
            if self.season_number is None or self.episode_number is None:
                raise HTTPException(422, "Episode interactions need season_number and episode_number")
            return InteractionKey.for_episode(self.tmdb_id, self.season_number, self.episode_number)
        return InteractionKey.for_title(kind, self.tmdb_id)


class BulkWatched(BaseModel):
    items: list[InteractionTarget]


class RatingUpdate(InteractionTarget):
    rating: float = Field(..., ge=0, le=5)


def resolution_out(resolution: Resolution) -> dict:
    return {
        "outcome": resolution.outcome.value,
        "reminder": (
            backup_codec.reminder_schema(resolution.reminder).model_dump(mode="json")
            if resolution.reminder else None
        ),
    }


# ── Library ──────────────────────────────────────────────────────

@router.get("/library")
async def get_library(store: EntityStore = Depends(get_store)):
    """Watchlist and subscribed lists."""
    return {
        "watchlist": [backup_codec.item_schema(i).model_dump(mode="json") for i in store.watchlist],
        "subscribed_lists": [
            {
                "id": lst.id,
                "name": lst.name,
                "items": [backup_codec.item_schema(i).model_dump(mode="json") for i in lst.items],
            }
            for lst in store.subscribed_lists
        ],
    }


@router.post("/library")
async def add_to_library(
    body: MediaItemSchema,
    request: Request,
    store: EntityStore = Depends(get_store),
    engine: SyncEngine = Depends(get_engine),
    resolver: ReminderResolver = Depends(get_resolver),
):
    """Add a title to the watchlist, fetch its dates, and resolve its reminder.

    With the `ask` strategy the response carries outcome `prompt`; the
    client answers through POST /reminders/answer.
    """
    if engine.is_running:
        raise HTTPException(409, "A sync run is in progress; try again when it finishes")

    item = backup_codec.to_item(body)
    if not store.add_to_watchlist(item):
        return {"added": False, "key": str(item.key), "resolution": None}

    fetched = await engine.refresh_item(item)
    resolution = resolver.on_library_add(item)
    await save_state(request)
    logger.info(f"Added {item.name} ({item.key}) to the library")
    return {
        "added": True,
        "key": str(item.key),
        "fetched": fetched,
        "resolution": resolution_out(resolution),
    }


@router.post("/library/lists")
async def subscribe_list(
    body: SubscribedListSchema,
    request: Request,
    store: EntityStore = Depends(get_store),
    engine: SyncEngine = Depends(get_engine),
):
    """Subscribe to a shared list and fetch dates for its new titles."""
    if engine.is_running:
        raise HTTPException(409, "A sync run is in progress; try again when it finishes")

    tracked = {i.key for i in store.tracked_items()}
    lst = SubscribedList(id=body.id, name=body.name, items=tuple(backup_codec.to_item(i) for i in body.items))
    store.subscribe_list(lst)
    failed = 0
    for item in lst.items:
        if item.key not in tracked and not await engine.refresh_item(item):
            failed += 1
    await save_state(request)
    return {"subscribed": lst.id, "items": len(lst.items), "failed": failed}


@router.delete("/library/lists/{list_id}")
async def unsubscribe_list(list_id: str, request: Request, store: EntityStore = Depends(get_store)):
    if not store.unsubscribe_list(list_id):
        raise HTTPException(404, f"List {list_id} is not subscribed")
    await save_state(request)
    return {"removed": list_id}


@router.delete("/library/{media_type}/{item_id}")
async def remove_from_library(
    media_type: MediaKind,
    item_id: int,
    request: Request,
    store: EntityStore = Depends(get_store),
):
    key = LibraryKey(media_type, item_id)
    if not store.remove_from_watchlist(key):
        raise HTTPException(404, f"{key} is not in the watchlist")
    await save_state(request)
    return {"removed": str(key)}


@router.get("/library/search")
async def search(request: Request, q: str = Query(..., min_length=1)):
    """Catalog search for titles to add."""
    results = await request.app.state.catalog.search_shows(q)
    return {"results": [backup_codec.item_schema(i).model_dump(mode="json") for i in results]}


@router.get("/library/popular")
async def popular(request: Request):
    results = await request.app.state.catalog.get_popular_shows()
    return {"results": [backup_codec.item_schema(i).model_dump(mode="json") for i in results]}


# ── Interactions ─────────────────────────────────────────────────

@router.get("/interactions")
async def list_interactions(store: EntityStore = Depends(get_store)):
    return {
        key.legacy: backup_codec.interaction_schema(key, value).model_dump(mode="json")
        for key, value in sorted(store.interactions.items())
    }


@router.post("/interactions/toggle")
async def toggle_watched(
    body: InteractionTarget,
    request: Request,
    store: EntityStore = Depends(get_store),
):
    key = body.key()
    updated = store.toggle_watched(key)
    await save_state(request)
    return {"key": key.legacy, "is_watched": updated.is_watched, "watched_at": updated.watched_at}


@router.post("/interactions/bulk")
async def mark_watched(
    body: BulkWatched,
    request: Request,
    store: EntityStore = Depends(get_store),
):
    """Mark many entries watched at once (catch-up)."""
    changed = store.mark_many_watched([t.key() for t in body.items])
    if changed:
        await save_state(request)
    return {"changed": changed, "total": len(body.items)}


@router.post("/interactions/rating")
async def rate(
    body: RatingUpdate,
    request: Request,
    store: EntityStore = Depends(get_store),
):
    key = body.key()
    updated = store.set_rating(key, body.rating)
    await save_state(request)
    return {"key": key.legacy, "rating": updated.rating}

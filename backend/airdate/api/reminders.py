"""Reminder endpoints."""

from datetime import timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from airdate.api.calendar import episode_out
from airdate.api.deps import get_resolver, get_store, save_state
from airdate.api.library import resolution_out
from airdate.models.domain import LibraryKey, MediaKind, ReminderScope
from airdate.models.schemas import ReminderSchema
from airdate.services import backup_codec
from airdate.services.entity_store import EntityStore
from airdate.services.reminders import PromptAnswer, PromptChoice, ReminderResolver

router = APIRouter()


class ReminderAnswer(BaseModel):
    """The client's reply to an `ask`-strategy prompt."""
    tmdb_id: int
    media_type: Literal["tv", "movie"]
    choice: Literal["confirm", "decline", "always", "never"]
    scope: Optional[Literal["all", "episode", "movie_theatrical", "movie_digital"]] = None
    offset_minutes: int = Field(0, ge=0)
    episode_season: Optional[int] = None
    episode_number: Optional[int] = None


@router.get("/reminders")
async def list_reminders(store: EntityStore = Depends(get_store)):
    return {"reminders": [backup_codec.reminder_schema(r).model_dump(mode="json") for r in store.reminders]}


@router.post("/reminders")
async def create_reminder(
    body: ReminderSchema,
    request: Request,
    resolver: ReminderResolver = Depends(get_resolver),
):
    """Create a reminder directly. An equivalent existing reminder is returned instead."""
    try:
        reminder = backup_codec.to_reminder(body)
    except ValueError as e:
        raise HTTPException(422, str(e))
    saved = resolver.commit(reminder)
    await save_state(request)
    return backup_codec.reminder_schema(saved).model_dump(mode="json")


@router.post("/reminders/answer")
async def answer_prompt(
    body: ReminderAnswer,
    request: Request,
    store: EntityStore = Depends(get_store),
    resolver: ReminderResolver = Depends(get_resolver),
):
    key = LibraryKey(MediaKind(body.media_type), body.tmdb_id)
    item = store.get_item(key)
    if item is None:
        raise HTTPException(404, f"{key} is not in the library")

    try:
        resolution = resolver.answer(item, PromptAnswer(
            choice=PromptChoice(body.choice),
            scope=ReminderScope(body.scope) if body.scope else None,
            offset_minutes=body.offset_minutes,
            episode_season=body.episode_season,
            episode_number=body.episode_number,
        ))
    except ValueError as e:
        raise HTTPException(422, str(e))
    await save_state(request)
    return resolution_out(resolution)


@router.delete("/reminders/{reminder_id}")
async def delete_reminder(reminder_id: str, request: Request, store: EntityStore = Depends(get_store)):
    if not store.remove_reminder(reminder_id):
        raise HTTPException(404, f"Reminder {reminder_id} not found")
    await save_state(request)
    return {"removed": reminder_id}


@router.get("/reminders/upcoming")
async def upcoming(
    days: int = Query(30, ge=1, le=365),
    store: EntityStore = Depends(get_store),
    resolver: ReminderResolver = Depends(get_resolver),
):
    """Trigger instants due within the next `days` days, soonest first."""
    return {
        "triggers": [
            {
                "reminder_id": t.reminder.id,
                "fire_at": t.fire_at.isoformat(),
                "episode": episode_out(t.episode, store),
            }
            for t in resolver.upcoming(timedelta(days=days))
        ]
    }

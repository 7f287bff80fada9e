"""Settings endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from airdate.api.deps import get_store, save_state
from airdate.models.schemas import SettingsSchema
from airdate.services import backup_codec
from airdate.services.entity_store import EntityStore

router = APIRouter()


@router.get("/settings")
async def get_settings(store: EntityStore = Depends(get_store)):
    return backup_codec.settings_schema(store.settings).model_dump(mode="json", by_alias=True)


@router.patch("/settings")
async def update_settings(
    request: Request,
    patch: dict[str, Any] = Body(...),
    store: EntityStore = Depends(get_store),
):
    """Apply a partial update (camelCase or snake_case keys). Unknown keys are rejected."""
    try:
        schema = SettingsSchema.model_validate(patch)
    except PydanticValidationError as e:
        raise HTTPException(422, str(e))

    known = {key for name in SettingsSchema.model_fields for key in (name, to_camel(name))}
    unknown = sorted(set(patch) - known)
    if unknown:
        raise HTTPException(422, f"Unknown settings: {', '.join(unknown)}")

    changes = backup_codec.to_settings_patch(schema)
    if not changes:
        raise HTTPException(422, "No settings to change")
    try:
        updated = store.update_settings(changes)
    except ValueError as e:
        raise HTTPException(422, str(e))
    await save_state(request)
    return backup_codec.settings_schema(updated).model_dump(mode="json", by_alias=True)

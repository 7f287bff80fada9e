"""Pydantic schemas for the portable backup / sync payload.

Field names follow the backup file format: TMDB-style snake_case for
media items, interactions and reminders; camelCase for the top-level
`subscribedLists` key and for everything inside `settings`.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class BackupUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: str
    tmdb_key: Optional[str] = None
    id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "tmdbKey" in data and "tmdb_key" not in data:
            data = {**data, "tmdb_key": data["tmdbKey"]}
        return data


class MediaItemSchema(BaseModel):
    """A watchlist / list entry. Accepts raw TMDB search results as well."""
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    media_type: Literal["tv", "movie"]
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    first_air_date: Optional[str] = None
    overview: Optional[str] = ""
    vote_average: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_tmdb_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("name") and data.get("title"):
            data["name"] = data["title"]
        if not data.get("first_air_date") and data.get("release_date"):
            data["first_air_date"] = data["release_date"]
        if not data.get("media_type"):
            data["media_type"] = "movie" if data.get("title") else "tv"
        return data


class SubscribedListSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    items: list[MediaItemSchema] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class InteractionSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tmdb_id: int
    media_type: Literal["tv", "movie", "episode"]
    is_watched: bool = False
    watched_at: Optional[datetime] = None
    rating: Optional[float] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None


class ReminderSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    tmdb_id: int
    media_type: Literal["tv", "movie"]
    show_name: Optional[str] = None
    scope: Literal["all", "episode", "movie_theatrical", "movie_digital"]
    episode_season: Optional[int] = None
    episode_number: Optional[int] = None
    offset_minutes: int = Field(0, ge=0)


class SpoilerConfigSchema(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    images: bool = False
    overview: bool = False
    title: bool = False
    include_movies: bool = False
    replacement_mode: Literal["blur", "banner"] = "blur"


class HiddenItemSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    media_type: Optional[Literal["tv", "movie"]] = None   # absent in older files


class SettingsSchema(BaseModel):
    """Settings as stored in a backup. Every key is optional; UI-only keys are ignored."""
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    view_mode: Optional[Literal["grid", "list"]] = None
    compact_calendar: Optional[bool] = None
    hide_theatrical: Optional[bool] = None
    ignore_specials: Optional[bool] = None
    hidden_items: Optional[list[HiddenItemSchema]] = None
    spoiler_config: Optional[SpoilerConfigSchema] = None
    reminder_strategy: Optional[Literal["ask", "always", "never"]] = None
    timezone: Optional[str] = None
    auto_sync: Optional[bool] = None
    version: Optional[int] = None   # informational; a restore always bumps it

    @field_validator("view_mode", mode="before")
    @classmethod
    def _fold_legacy_view_mode(cls, value: Any) -> Any:
        # older builds had a third "stack" layout; it renders as a list
        return "list" if value == "stack" else value


class BackupPayload(BaseModel):
    """The full serializable snapshot of a user's state."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user: BackupUser
    watchlist: list[MediaItemSchema] = Field(default_factory=list)
    subscribed_lists: Optional[list[SubscribedListSchema]] = Field(None, alias="subscribedLists")
    interactions: dict[str, InteractionSchema] = Field(default_factory=dict)
    reminders: list[ReminderSchema] = Field(default_factory=list)
    settings: Optional[SettingsSchema] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_history_alias(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # older exports call the interaction map "history"
        if "interactions" not in data and isinstance(data.get("history"), dict):
            data = {**data, "interactions": data["history"]}
        # cloud exports ship interactions as rows; keys are rebuilt from the fields
        if isinstance(data.get("interactions"), list):
            data = {**data, "interactions": {str(i): row for i, row in enumerate(data["interactions"])}}
        return data

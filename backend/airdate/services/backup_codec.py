"""Backup codec: the portable snapshot of a user's whole state.

`decode` is the single validation gate for everything that arrives from
outside: backup files, QR sync strings and cloud copies. It never lets a
parser exception escape; anything malformed becomes a ValidationError.
`plan` converts a decoded payload into domain objects so that every
conversion error also surfaces before the store is touched.
"""

import base64
import binascii
import json
import logging
import zlib
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from airdate.errors import ValidationError
from airdate.models.domain import (
    AppSettings, HiddenItem, Interaction, InteractionKey, InteractionKind,
    LibraryItem, LibraryKey, MediaKind, Reminder, ReminderScope,
    SubscribedList, UserProfile,
)
from airdate.models.schemas import (
    BackupPayload, BackupUser, HiddenItemSchema, InteractionSchema,
    MediaItemSchema, ReminderSchema, SettingsSchema, SpoilerConfigSchema,
    SubscribedListSchema,
)
from airdate.services.entity_store import EntityStore

logger = logging.getLogger(__name__)

SYNC_PREFIX = "AD1:"

RawPayload = Union[str, bytes, bytearray, dict]


# ── Decoding ─────────────────────────────────────────────────────

def decode(raw: RawPayload) -> BackupPayload:
    """Parse and validate a backup. Raises ValidationError, nothing else."""
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise ValidationError("Invalid backup file. Expected a JSON object.")
    if not data.get("user"):
        raise ValidationError("Invalid backup file. Missing user data.")
    for name in ("watchlist", "subscribedLists"):
        if data.get(name) is not None and not isinstance(data[name], list):
            raise ValidationError(f"Invalid backup file. '{name}' must be a list.")

    try:
        return BackupPayload.model_validate(data)
    except PydanticValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ValidationError("Invalid backup file. Schema validation failed.", problems) from e


def _load_json(raw: RawPayload) -> Any:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError("Invalid backup file. Not UTF-8 text.") from e
    if not isinstance(raw, str):
        raise ValidationError(f"Unsupported payload type: {type(raw).__name__}")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid backup file. Malformed JSON ({e.msg}).") from e


def decode_sync_payload(raw: str) -> BackupPayload:
    """Decode a device-to-device sync string (compressed or plain JSON)."""
    text = (raw or "").strip()
    if text.startswith(SYNC_PREFIX):
        try:
            packed = base64.urlsafe_b64decode(text[len(SYNC_PREFIX):].encode("ascii"))
            text = zlib.decompress(packed).decode("utf-8")
        except (binascii.Error, zlib.error, UnicodeError, ValueError) as e:
            raise ValidationError("Sync payload is corrupted.") from e
    return decode(text)


# ── Encoding ─────────────────────────────────────────────────────

def encode(store: EntityStore) -> dict:
    """Serialize the store into the backup file format."""
    user = store.user or UserProfile(username="local")
    payload = BackupPayload(
        user=BackupUser(username=user.username, tmdb_key=user.tmdb_key, id=user.id),
        watchlist=[item_schema(i) for i in store.watchlist],
        subscribed_lists=[
            SubscribedListSchema(id=lst.id, name=lst.name, items=[item_schema(i) for i in lst.items])
            for lst in store.subscribed_lists
        ],
        interactions={
            key.legacy: interaction_schema(key, value)
            for key, value in sorted(store.interactions.items())
        },
        reminders=[reminder_schema(r) for r in store.reminders],
        settings=settings_schema(store.settings),
    )
    return payload.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_sync_payload(store: EntityStore) -> str:
    """Compact string for the QR transport."""
    text = json.dumps(encode(store), separators=(",", ":"))
    packed = zlib.compress(text.encode("utf-8"), 9)
    return SYNC_PREFIX + base64.urlsafe_b64encode(packed).decode("ascii")


def item_schema(item: LibraryItem) -> MediaItemSchema:
    return MediaItemSchema(
        id=item.id,
        name=item.name,
        media_type=item.media_type.value,
        poster_path=item.poster_path,
        backdrop_path=item.backdrop_path,
        first_air_date=item.first_air_date,
        overview=item.overview,
        vote_average=item.vote_average,
    )


def interaction_schema(key: InteractionKey, value: Interaction) -> InteractionSchema:
    return InteractionSchema(
        tmdb_id=key.show_id,
        media_type=key.kind.value,
        is_watched=value.is_watched,
        watched_at=value.watched_at,
        rating=value.rating,
        season_number=key.season,
        episode_number=key.episode,
    )


def reminder_schema(r: Reminder) -> ReminderSchema:
    return ReminderSchema(
        id=r.id,
        tmdb_id=r.tmdb_id,
        media_type=r.media_type.value,
        show_name=r.show_name,
        scope=r.scope.value,
        episode_season=r.episode_season,
        episode_number=r.episode_number,
        offset_minutes=r.offset_minutes,
    )


def settings_schema(s: AppSettings) -> SettingsSchema:
    return SettingsSchema(
        view_mode=s.view_mode.value,
        compact_calendar=s.compact_calendar,
        hide_theatrical=s.hide_theatrical,
        ignore_specials=s.ignore_specials,
        hidden_items=[
            HiddenItemSchema(id=h.id, name=h.name, media_type=h.media_type.value if h.media_type else None)
            for h in s.hidden_items
        ],
        spoiler_config=SpoilerConfigSchema(
            images=s.spoiler_config.images,
            overview=s.spoiler_config.overview,
            title=s.spoiler_config.title,
            include_movies=s.spoiler_config.include_movies,
            replacement_mode=s.spoiler_config.replacement_mode.value,
        ),
        reminder_strategy=s.reminder_strategy.value,
        timezone=s.timezone,
        auto_sync=s.auto_sync,
        version=s.version,
    )


# ── Payload -> domain ────────────────────────────────────────────

@dataclass
class RestorePlan:
    """A decoded payload fully converted to domain objects, ready to apply."""
    user: UserProfile
    watchlist: list[LibraryItem] = field(default_factory=list)
    lists: list[SubscribedList] = field(default_factory=list)
    interactions: dict[InteractionKey, Interaction] = field(default_factory=dict)
    reminders: list[Reminder] = field(default_factory=list)
    settings_patch: Optional[dict] = None

    def units(self) -> list[tuple[LibraryItem, bool]]:
        """Fetchable units: (item, belongs_to_watchlist), one per distinct key."""
        seen: dict[LibraryKey, tuple[LibraryItem, bool]] = {}
        for item in self.watchlist:
            seen.setdefault(item.key, (item, True))
        for lst in self.lists:
            for item in lst.items:
                seen.setdefault(item.key, (item, False))
        return list(seen.values())


def plan(payload: BackupPayload) -> RestorePlan:
    """Convert a decoded payload. Raises ValidationError on inconsistent records."""
    try:
        restore_plan = RestorePlan(
            user=UserProfile(
                username=payload.user.username,
                tmdb_key=payload.user.tmdb_key,
                id=payload.user.id,
            ),
            watchlist=[to_item(i) for i in payload.watchlist],
            lists=[
                SubscribedList(id=lst.id, name=lst.name, items=tuple(to_item(i) for i in lst.items))
                for lst in payload.subscribed_lists or []
            ],
            interactions=dict(to_interaction(row) for row in payload.interactions.values()),
            reminders=[to_reminder(r) for r in payload.reminders],
            settings_patch=to_settings_patch(payload.settings),
        )
        if restore_plan.settings_patch:
            AppSettings().patched(restore_plan.settings_patch)
    except (ValueError, KeyError) as e:
        raise ValidationError(f"Invalid backup file. {e}") from e
    return restore_plan


def to_item(schema: MediaItemSchema) -> LibraryItem:
    return LibraryItem(
        id=schema.id,
        media_type=MediaKind(schema.media_type),
        name=schema.name,
        poster_path=schema.poster_path,
        first_air_date=schema.first_air_date or None,
        backdrop_path=schema.backdrop_path,
        overview=schema.overview or "",
        vote_average=schema.vote_average,
    )


def to_interaction(row: InteractionSchema) -> tuple[InteractionKey, Interaction]:
    kind = InteractionKind(row.media_type)
    if kind is InteractionKind.EPISODE:
        key = InteractionKey.for_episode(row.tmdb_id, row.season_number, row.episode_number)
    else:
        key = InteractionKey.for_title(kind, row.tmdb_id)
    return key, Interaction(is_watched=row.is_watched, watched_at=row.watched_at, rating=row.rating)


def to_reminder(row: ReminderSchema) -> Reminder:
    extra = {"id": row.id} if row.id else {}
    return Reminder(
        tmdb_id=row.tmdb_id,
        media_type=MediaKind(row.media_type),
        show_name=row.show_name,
        scope=ReminderScope(row.scope),
        episode_season=row.episode_season,
        episode_number=row.episode_number,
        offset_minutes=row.offset_minutes,
        **extra,
    )


def to_settings_patch(schema: Optional[SettingsSchema]) -> Optional[dict]:
    if schema is None:
        return None
    patch = schema.model_dump(exclude_unset=True, exclude_none=True, exclude={"version"})
    if "hidden_items" in patch:
        patch["hidden_items"] = [
            HiddenItem(h["id"], h.get("name", ""), MediaKind(h["media_type"]) if h.get("media_type") else None)
            for h in patch["hidden_items"]
        ]
    return patch or None


def restore(payload: Union[BackupPayload, RestorePlan], store: Optional[EntityStore] = None) -> EntityStore:
    """Apply a payload directly, without catalog fetches (startup hydration)."""
    restore_plan = payload if isinstance(payload, RestorePlan) else plan(payload)
    store = store or EntityStore()
    store.user = restore_plan.user
    store.apply_batch([(item, True, None) for item in restore_plan.watchlist])
    for lst in restore_plan.lists:
        store.subscribe_list(lst)
    store.merge_state(restore_plan.interactions, restore_plan.reminders, restore_plan.settings_patch)
    return store


# ── Legacy import & merge preview ────────────────────────────────

def scan_legacy(data: Any, existing: Optional[set[LibraryKey]] = None) -> list[LibraryItem]:
    """Find media-shaped objects anywhere inside an arbitrary JSON document.

    An object counts when it has an id, a name and a tv/movie media_type;
    its children are not searched further. Known and repeated keys are dropped.
    """
    existing = existing or set()
    found: dict[LibraryKey, LibraryItem] = {}

    def visit(node: Any) -> None:
        if isinstance(node, list):
            for child in node:
                visit(child)
            return
        if not isinstance(node, dict):
            return
        if node.get("id") and node.get("name") and node.get("media_type") in ("tv", "movie"):
            try:
                item = to_item(MediaItemSchema.model_validate(node))
            except PydanticValidationError:
                return
            if item.key not in existing:
                found.setdefault(item.key, item)
            return
        for child in node.values():
            visit(child)

    visit(data)
    return list(found.values())


@dataclass
class MergePreview:
    match_count: int
    new_items: list[LibraryItem]
    new_lists: list[SubscribedList]

    @property
    def total_new(self) -> int:
        return len(self.new_items) + len(self.new_lists)


def preview_merge(payload: BackupPayload, store: EntityStore) -> MergePreview:
    """What a merge-import would add on top of the current library."""
    restore_plan = plan(payload)
    current = {i.key for i in store.watchlist}
    current_lists = {lst.id for lst in store.subscribed_lists}
    new_items = [i for i in restore_plan.watchlist if i.key not in current]
    return MergePreview(
        match_count=len(restore_plan.watchlist) - len(new_items),
        new_items=new_items,
        new_lists=[lst for lst in restore_plan.lists if lst.id not in current_lists],
    )

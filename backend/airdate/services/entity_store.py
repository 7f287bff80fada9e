"""Entity store: the canonical in-memory state of one user's library.

Holds the watchlist, subscribed lists, interactions, reminders, settings
and the episodes fetched for each tracked title. All merges are
idempotent: writing the same composite key twice overwrites.
"""

import asyncio
import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence

from airdate.models.domain import (
    AppSettings, Episode, Interaction, InteractionKey, LibraryItem, LibraryKey,
    Reminder, SubscribedList, UserProfile,
)
from airdate.services.calendar_indexer import EMPTY_INDEX, CalendarIndex, build_index

logger = logging.getLogger(__name__)


class EntityStore:
    """Owns every user-facing collection. Readers get immutable snapshots."""

    def __init__(self, settings: Optional[AppSettings] = None, user: Optional[UserProfile] = None):
        self.user = user
        self._settings = settings or AppSettings()
        self._watchlist: dict[LibraryKey, LibraryItem] = {}
        self._lists: dict[str, SubscribedList] = {}
        self._interactions: dict[InteractionKey, Interaction] = {}
        self._reminders: dict[str, Reminder] = {}
        self._episodes: dict[LibraryKey, tuple[Episode, ...]] = {}
        self._index: CalendarIndex = EMPTY_INDEX
        # Held for the whole of a sync run; see SyncEngine
        self.sync_lock = asyncio.Lock()

    # ── Settings ─────────────────────────────────────────────────

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def update_settings(self, patch: Mapping[str, Any]) -> AppSettings:
        """Single entry point for settings changes. Returns the new snapshot."""
        self._settings = self._settings.patched(patch)
        logger.debug(f"Settings v{self._settings.version}: {sorted(patch)}")
        return self._settings

    # ── Library ──────────────────────────────────────────────────

    @property
    def watchlist(self) -> tuple[LibraryItem, ...]:
        return tuple(self._watchlist.values())

    @property
    def subscribed_lists(self) -> tuple[SubscribedList, ...]:
        return tuple(self._lists.values())

    def get_item(self, key: LibraryKey) -> Optional[LibraryItem]:
        item = self._watchlist.get(key)
        if item:
            return item
        for lst in self._lists.values():
            for candidate in lst.items:
                if candidate.key == key:
                    return candidate
        return None

    def in_watchlist(self, key: LibraryKey) -> bool:
        return key in self._watchlist

    def tracked_items(self) -> list[LibraryItem]:
        """Watchlist followed by subscribed-list items, de-duplicated by key."""
        seen: dict[LibraryKey, LibraryItem] = dict(self._watchlist)
        for lst in self._lists.values():
            for item in lst.items:
                seen.setdefault(item.key, item)
        return list(seen.values())

    def add_to_watchlist(self, item: LibraryItem) -> bool:
        """Add an item. Returns False when it was already present."""
        if item.key in self._watchlist:
            return False
        self._watchlist[item.key] = item
        return True

    def remove_from_watchlist(self, key: LibraryKey) -> bool:
        if self._watchlist.pop(key, None) is None:
            return False
        if key not in {i.key for i in self.tracked_items()}:
            self._episodes.pop(key, None)
            self.rebuild_index()
        return True

    def subscribe_list(self, lst: SubscribedList) -> None:
        self._lists[lst.id] = lst

    def unsubscribe_list(self, list_id: str) -> bool:
        if self._lists.pop(list_id, None) is None:
            return False
        tracked = {i.key for i in self.tracked_items()}
        for key in [k for k in self._episodes if k not in tracked]:
            del self._episodes[key]
        self.rebuild_index()
        return True

    # ── Interactions ─────────────────────────────────────────────

    @property
    def interactions(self) -> Mapping[InteractionKey, Interaction]:
        return MappingProxyType(dict(self._interactions))

    def get_interaction(self, key: InteractionKey) -> Optional[Interaction]:
        return self._interactions.get(key)

    def is_watched(self, key: InteractionKey) -> bool:
        found = self._interactions.get(key)
        return bool(found and found.is_watched)

    def set_interaction(self, key: InteractionKey, interaction: Interaction) -> None:
        self._interactions[key] = interaction

    def toggle_watched(self, key: InteractionKey, now: Optional[datetime] = None) -> Interaction:
        existing = self._interactions.get(key)
        watched = not (existing and existing.is_watched)
        updated = Interaction(
            is_watched=watched,
            watched_at=(now or datetime.now(timezone.utc)) if watched else None,
            rating=existing.rating if existing else None,
        )
        self._interactions[key] = updated
        return updated

    def mark_many_watched(self, keys: Iterable[InteractionKey], now: Optional[datetime] = None) -> int:
        """Mark keys watched, leaving already-watched ones untouched. Returns the count changed."""
        now = now or datetime.now(timezone.utc)
        changed = 0
        for key in keys:
            existing = self._interactions.get(key)
            if existing and existing.is_watched:
                continue
            self._interactions[key] = Interaction(
                is_watched=True, watched_at=now, rating=existing.rating if existing else None,
            )
            changed += 1
        return changed

    def set_rating(self, key: InteractionKey, rating: float) -> Interaction:
        existing = self._interactions.get(key) or Interaction(is_watched=False)
        updated = Interaction(existing.is_watched, existing.watched_at, rating)
        self._interactions[key] = updated
        return updated

    # ── Reminders ────────────────────────────────────────────────

    @property
    def reminders(self) -> tuple[Reminder, ...]:
        return tuple(self._reminders.values())

    def add_reminder(self, reminder: Reminder) -> Reminder:
        self._reminders[reminder.id] = reminder
        return reminder

    def remove_reminder(self, reminder_id: str) -> bool:
        return self._reminders.pop(reminder_id, None) is not None

    def reminders_for(self, key: LibraryKey) -> list[Reminder]:
        return [r for r in self._reminders.values() if r.library_key == key]

    # ── Episodes & calendar index ────────────────────────────────

    @property
    def calendar_index(self) -> CalendarIndex:
        return self._index

    def episodes_for(self, key: LibraryKey) -> tuple[Episode, ...]:
        return self._episodes.get(key, ())

    def episodes_by_show(self) -> dict[LibraryKey, tuple[Episode, ...]]:
        """Fetched episodes of tracked titles, in tracked order."""
        return {
            item.key: self._episodes[item.key]
            for item in self.tracked_items()
            if item.key in self._episodes
        }

    def set_episodes(self, key: LibraryKey, episodes: Sequence[Episode]) -> None:
        self._episodes[key] = tuple(episodes)

    def rebuild_index(self) -> CalendarIndex:
        self._index = build_index(self.episodes_by_show())
        return self._index

    # ── Bulk merges (sync pipeline) ──────────────────────────────

    def apply_batch(self, results: Sequence[tuple[LibraryItem, bool, Optional[Sequence[Episode]]]]) -> None:
        """Merge one finished sync batch.

        Each entry is (item, belongs_to_watchlist, episodes-or-None). Items are
        restored even when their fetch failed; they just have no episodes.
        """
        for item, to_watchlist, episodes in results:
            if to_watchlist:
                self._watchlist[item.key] = item
            if episodes is not None:
                self._episodes[item.key] = tuple(episodes)

    def merge_state(
        self,
        interactions: Mapping[InteractionKey, Interaction],
        reminders: Iterable[Reminder],
        settings_patch: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Last-write-wins merge of the collections that need no catalog fetch."""
        self._interactions.update(interactions)
        for reminder in reminders:
            self._reminders[reminder.id] = reminder
        if settings_patch:
            self.update_settings(settings_patch)

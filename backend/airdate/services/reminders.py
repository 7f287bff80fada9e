"""Reminder resolution: what to do when something is added to the library.

A library-add is evaluated against `settings.reminder_strategy`:

- never  -> skip, nothing is created and nobody is asked
- always -> a default reminder is committed straight away
- ask    -> the candidate is handed back (and to the prompt callback, if any)
            so the UI can ask; the answer is fed to `answer()`

Reminders are standing rules. Trigger instants are expanded per episode
with `expand`, never materialized up front.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from airdate.models.domain import (
    Episode, LibraryItem, MediaKind, ReleaseType, Reminder, ReminderScope,
    ReminderStrategy,
)
from airdate.services.calendar_indexer import CalendarIndex, days_with_entries
from airdate.services.entity_store import EntityStore

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SKIP = "skip"
    PROMPT = "prompt"
    AUTO_COMMIT = "auto_commit"


class PromptChoice(str, Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"
    ALWAYS = "always"
    NEVER = "never"


@dataclass(frozen=True)
class PromptAnswer:
    """The user's response to a reminder prompt."""
    choice: PromptChoice
    scope: Optional[ReminderScope] = None
    offset_minutes: int = 0
    episode_season: Optional[int] = None
    episode_number: Optional[int] = None


@dataclass(frozen=True)
class Resolution:
    outcome: Outcome
    item: LibraryItem
    reminder: Optional[Reminder] = None


@dataclass(frozen=True)
class Trigger:
    reminder: Reminder
    episode: Episode
    fire_at: datetime


class ReminderResolver:
    """Decides reminder creation for library-add events."""

    def __init__(
        self,
        store: EntityStore,
        prompt: Optional[Callable[[LibraryItem], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.prompt = prompt
        self.clock = clock

    def on_library_add(self, item: LibraryItem) -> Resolution:
        strategy = self.store.settings.reminder_strategy
        return self._resolve(item, strategy)

    def answer(self, item: LibraryItem, answer: PromptAnswer) -> Resolution:
        """Resolve a pending prompt for `item`."""
        if answer.choice is PromptChoice.DECLINE:
            return Resolution(Outcome.SKIP, item)

        if answer.choice is PromptChoice.CONFIRM:
            reminder = Reminder(
                tmdb_id=item.id,
                media_type=item.media_type,
                show_name=item.name,
                scope=answer.scope or self.default_scope(item),
                offset_minutes=answer.offset_minutes,
                episode_season=answer.episode_season,
                episode_number=answer.episode_number,
            )
            return Resolution(Outcome.AUTO_COMMIT, item, self.commit(reminder))

        # ALWAYS / NEVER also change how every future add is handled
        strategy = ReminderStrategy(answer.choice.value)
        self.store.update_settings({"reminder_strategy": strategy})
        logger.info(f"Reminder strategy set to '{strategy.value}' from prompt")
        return self._resolve(item, strategy)

    def _resolve(self, item: LibraryItem, strategy: ReminderStrategy) -> Resolution:
        if strategy is ReminderStrategy.NEVER:
            return Resolution(Outcome.SKIP, item)
        if strategy is ReminderStrategy.ALWAYS:
            return Resolution(Outcome.AUTO_COMMIT, item, self.commit(self.default_reminder(item)))
        if strategy is ReminderStrategy.ASK:
            if self.prompt:
                self.prompt(item)
            return Resolution(Outcome.PROMPT, item)
        raise ValueError(f"Unhandled reminder strategy: {strategy!r}")

    # ── Reminder construction ────────────────────────────────────

    def default_scope(self, item: LibraryItem) -> ReminderScope:
        if item.media_type is MediaKind.TV:
            return ReminderScope.ALL
        if item.media_type is MediaKind.MOVIE:
            if self.is_theatrical_first(item):
                return ReminderScope.MOVIE_THEATRICAL
            return ReminderScope.MOVIE_DIGITAL
        raise ValueError(f"Unhandled media type: {item.media_type!r}")

    def default_reminder(self, item: LibraryItem) -> Reminder:
        return Reminder(
            tmdb_id=item.id,
            media_type=item.media_type,
            show_name=item.name,
            scope=self.default_scope(item),
            offset_minutes=0,
        )

    def is_theatrical_first(self, item: LibraryItem) -> bool:
        """Whether a movie opens in cinemas before it is available digitally.

        Uses fetched release entries when there are any, otherwise treats a
        release date still in the future as a cinema release.
        """
        releases = sorted(
            (ep for ep in self.store.episodes_for(item.key) if ep.is_movie and ep.air_date),
            key=lambda ep: ep.air_date,
        )
        if releases:
            return releases[0].release_type is ReleaseType.THEATRICAL
        released = item.release_date
        return bool(released and released > self.clock().date())

    def commit(self, reminder: Reminder) -> Reminder:
        """Persist a reminder unless an equivalent one already exists."""
        existing = find_existing(self.store.reminders_for(reminder.library_key), reminder)
        if existing:
            return existing
        return self.store.add_reminder(reminder)

    # ── Expansion ────────────────────────────────────────────────

    def upcoming(self, horizon: timedelta = timedelta(days=30)) -> list[Trigger]:
        return upcoming_triggers(
            self.store.reminders,
            self.store.calendar_index,
            now=self.clock(),
            horizon=horizon,
            tz=zone_for(self.store.settings.timezone),
        )


def find_existing(candidates: list[Reminder], reminder: Reminder) -> Optional[Reminder]:
    for r in candidates:
        if r.scope is not reminder.scope:
            continue
        if r.scope is ReminderScope.EPISODE and (
            (r.episode_season, r.episode_number) != (reminder.episode_season, reminder.episode_number)
        ):
            continue
        return r
    return None


def zone_for(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return timezone.utc


def release_instant(episode: Episode, tz: tzinfo = timezone.utc) -> datetime:
    """Local midnight of the release day."""
    if episode.air_date is None:
        raise ValueError(f"Episode {episode.id} of show {episode.show_id} has no air date")
    return datetime.combine(episode.air_date, time.min, tzinfo=tz)


def expand(reminder: Reminder, episode: Episode, tz: tzinfo = timezone.utc) -> datetime:
    """When `reminder` should fire for `episode`."""
    return release_instant(episode, tz) - timedelta(minutes=reminder.offset_minutes)


def applies_to(reminder: Reminder, episode: Episode) -> bool:
    if episode.library_key != reminder.library_key:
        return False
    if reminder.scope is ReminderScope.ALL:
        return True
    if reminder.scope is ReminderScope.EPISODE:
        return (episode.season_number, episode.episode_number) == (
            reminder.episode_season, reminder.episode_number,
        )
    if reminder.scope is ReminderScope.MOVIE_THEATRICAL:
        return episode.release_type is ReleaseType.THEATRICAL
    if reminder.scope is ReminderScope.MOVIE_DIGITAL:
        return episode.release_type is ReleaseType.DIGITAL
    raise ValueError(f"Unhandled reminder scope: {reminder.scope!r}")


def upcoming_triggers(
    reminders: tuple[Reminder, ...],
    index: CalendarIndex,
    now: datetime,
    horizon: timedelta = timedelta(days=30),
    tz: tzinfo = timezone.utc,
) -> list[Trigger]:
    """Pending triggers with fire times in [now, now + horizon], soonest first."""
    if not reminders:
        return []
    end = now + horizon
    # A reminder can fire days before its release, so scan releases past the window end
    max_offset = timedelta(minutes=max(r.offset_minutes for r in reminders))
    first_day: date = (now - timedelta(days=1)).date()
    last_day: date = (end + max_offset + timedelta(days=1)).date()

    triggers = []
    for day in days_with_entries(index, first_day, last_day):
        for ep in index[day]:
            for reminder in reminders:
                if not applies_to(reminder, ep):
                    continue
                fire_at = expand(reminder, ep, tz)
                if now <= fire_at <= end:
                    triggers.append(Trigger(reminder, ep, fire_at))
    triggers.sort(key=lambda t: t.fire_at)
    return triggers

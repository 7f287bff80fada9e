"""Core domain types: library items, episodes, interactions, reminders, settings.

Everything here is immutable. Collections that change over time live in
EntityStore, which swaps whole values instead of mutating them, so a
reader holding a reference never observes a half-applied merge.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from enum import Enum
from functools import total_ordering
from types import MappingProxyType
from typing import Any, Mapping, Optional
from uuid import uuid4


# ── Closed variants ──────────────────────────────────────────────

class MediaKind(str, Enum):
    TV = "tv"
    MOVIE = "movie"


class ReleaseType(str, Enum):
    THEATRICAL = "theatrical"
    DIGITAL = "digital"


class InteractionKind(str, Enum):
    EPISODE = "episode"
    MOVIE = "movie"
    TV = "tv"


class ReminderScope(str, Enum):
    ALL = "all"
    MOVIE_THEATRICAL = "movie_theatrical"
    MOVIE_DIGITAL = "movie_digital"
    EPISODE = "episode"


class ReminderStrategy(str, Enum):
    ASK = "ask"
    ALWAYS = "always"
    NEVER = "never"


class ViewMode(str, Enum):
    GRID = "grid"
    LIST = "list"


class ReplacementMode(str, Enum):
    BLUR = "blur"
    BANNER = "banner"


# ── Library ──────────────────────────────────────────────────────

@dataclass(frozen=True, order=True)
class LibraryKey:
    """Identity of a tracked title. TV and movie ids live in separate namespaces."""
    kind: MediaKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def parse(cls, value: str) -> "LibraryKey":
        kind, _, raw_id = value.partition(":")
        return cls(MediaKind(kind), int(raw_id))


@dataclass(frozen=True)
class LibraryItem:
    """A show or movie in the user's library."""
    id: int
    media_type: MediaKind
    name: str
    poster_path: Optional[str] = None
    first_air_date: Optional[str] = None    # release date for movies
    backdrop_path: Optional[str] = None
    overview: str = ""
    vote_average: Optional[float] = None

    @property
    def key(self) -> LibraryKey:
        return LibraryKey(self.media_type, self.id)

    @property
    def is_movie(self) -> bool:
        return self.media_type is MediaKind.MOVIE

    @property
    def release_date(self) -> Optional[date]:
        return parse_date(self.first_air_date)


@dataclass(frozen=True)
class SubscribedList:
    """An external list whose items are tracked alongside the watchlist."""
    id: str
    name: str
    items: tuple[LibraryItem, ...] = ()


@dataclass(frozen=True)
class UserProfile:
    username: str
    tmdb_key: Optional[str] = None
    id: Optional[str] = None     # cloud user id, when signed in


# ── Catalog data ─────────────────────────────────────────────────

@dataclass(frozen=True)
class Episode:
    """A dated release: one TV episode, or one release of a movie.

    Movies have no season/episode numbers and carry a release_type instead.
    """
    show_id: int
    id: int
    name: str
    air_date: Optional[date]
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    overview: str = ""
    still_path: Optional[str] = None
    poster_path: Optional[str] = None
    is_movie: bool = False
    release_type: Optional[ReleaseType] = None
    show_name: Optional[str] = None

    @property
    def media_kind(self) -> MediaKind:
        return MediaKind.MOVIE if self.is_movie else MediaKind.TV

    @property
    def library_key(self) -> LibraryKey:
        return LibraryKey(self.media_kind, self.show_id)

    @property
    def is_special(self) -> bool:
        return not self.is_movie and self.season_number == 0

    @property
    def interaction_key(self) -> "InteractionKey":
        if self.is_movie:
            return InteractionKey.for_title(InteractionKind.MOVIE, self.show_id)
        return InteractionKey.for_episode(self.show_id, self.season_number, self.episode_number)


# ── Interactions ─────────────────────────────────────────────────

@total_ordering
@dataclass(frozen=True)
class InteractionKey:
    """Tagged identity joining catalog entries to per-user watch state."""
    kind: InteractionKind
    show_id: int
    season: Optional[int] = None
    episode: Optional[int] = None

    def __post_init__(self):
        if self.kind is InteractionKind.EPISODE:
            if self.season is None or self.episode is None:
                raise ValueError("Episode keys need both season and episode numbers")
        elif self.season is not None or self.episode is not None:
            raise ValueError(f"{self.kind.value} keys take no season/episode numbers")

    @classmethod
    def for_episode(cls, show_id: int, season: int, episode: int) -> "InteractionKey":
        return cls(InteractionKind.EPISODE, show_id, season, episode)

    @classmethod
    def for_title(cls, kind: InteractionKind, tmdb_id: int) -> "InteractionKey":
        return cls(kind, tmdb_id)

    def _sort_key(self) -> tuple:
        season = -1 if self.season is None else self.season
        episode = -1 if self.episode is None else self.episode
        return (self.kind.value, self.show_id, season, episode)

    def __lt__(self, other: "InteractionKey") -> bool:
        if not isinstance(other, InteractionKey):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    @property
    def legacy(self) -> str:
        """String form used by backup files: episode-42-1-3 / movie-42."""
        if self.kind is InteractionKind.EPISODE:
            return f"episode-{self.show_id}-{self.season}-{self.episode}"
        return f"{self.kind.value}-{self.show_id}"

    @classmethod
    def parse(cls, value: str) -> "InteractionKey":
        parts = value.split("-")
        kind = InteractionKind(parts[0])
        if kind is InteractionKind.EPISODE:
            if len(parts) != 4:
                raise ValueError(f"Malformed episode key: {value!r}")
            return cls.for_episode(int(parts[1]), int(parts[2]), int(parts[3]))
        if len(parts) != 2:
            raise ValueError(f"Malformed {kind.value} key: {value!r}")
        return cls.for_title(kind, int(parts[1]))

    def __str__(self) -> str:
        return self.legacy


@dataclass(frozen=True)
class Interaction:
    is_watched: bool
    watched_at: Optional[datetime] = None
    rating: Optional[float] = None


# ── Reminders ────────────────────────────────────────────────────

_MOVIE_SCOPES = (ReminderScope.MOVIE_THEATRICAL, ReminderScope.MOVIE_DIGITAL)


@dataclass(frozen=True)
class Reminder:
    """A standing notification rule. Trigger instants are computed per episode."""
    tmdb_id: int
    media_type: MediaKind
    scope: ReminderScope
    offset_minutes: int = 0          # 0 = on the day, 1440 = a day before
    show_name: Optional[str] = None
    episode_season: Optional[int] = None
    episode_number: Optional[int] = None
    id: str = field(default_factory=lambda: uuid4().hex)

    def __post_init__(self):
        if self.offset_minutes < 0:
            raise ValueError("offset_minutes must be >= 0")
        if self.scope is ReminderScope.EPISODE:
            if self.episode_season is None or self.episode_number is None:
                raise ValueError("Episode reminders need episode_season and episode_number")
        if self.scope in _MOVIE_SCOPES and self.media_type is not MediaKind.MOVIE:
            raise ValueError(f"Scope {self.scope.value} only applies to movies")
        if self.scope in (ReminderScope.ALL, ReminderScope.EPISODE) and self.media_type is not MediaKind.TV:
            raise ValueError(f"Scope {self.scope.value} only applies to TV shows")

    @property
    def library_key(self) -> LibraryKey:
        return LibraryKey(self.media_type, self.tmdb_id)


# ── Settings ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class SpoilerConfig:
    images: bool = False
    overview: bool = False
    title: bool = False
    include_movies: bool = False
    replacement_mode: ReplacementMode = ReplacementMode.BLUR


@dataclass(frozen=True)
class HiddenItem:
    """A title kept off the calendar.

    Entries without a media type (older files) hide both the show and the
    movie with that id.
    """
    id: int
    name: str = ""
    media_type: Optional[MediaKind] = None

    @property
    def keys(self) -> frozenset[LibraryKey]:
        kinds = (self.media_type,) if self.media_type else tuple(MediaKind)
        return frozenset(LibraryKey(kind, self.id) for kind in kinds)


@dataclass(frozen=True)
class AppSettings:
    """User preferences. Replaced wholesale on every change; `version` counts changes."""
    view_mode: ViewMode = ViewMode.GRID
    compact_calendar: bool = False
    hide_theatrical: bool = False
    ignore_specials: bool = False
    hidden_items: tuple[HiddenItem, ...] = ()
    spoiler_config: SpoilerConfig = SpoilerConfig()
    reminder_strategy: ReminderStrategy = ReminderStrategy.ASK
    timezone: str = "UTC"
    auto_sync: bool = True
    version: int = 0

    @property
    def hidden_keys(self) -> frozenset[LibraryKey]:
        return frozenset(key for h in self.hidden_items for key in h.keys)

    def patched(self, patch: Mapping[str, Any]) -> "AppSettings":
        """Return a new snapshot with `patch` applied and the version bumped."""
        unknown = set(patch) - PATCHABLE_SETTINGS
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = {}
        for name, value in patch.items():
            if name == "spoiler_config":
                value = _coerce_spoiler(self.spoiler_config, value)
            elif name == "hidden_items":
                value = tuple(_coerce_hidden(v) for v in value or ())
            elif name in _ENUM_SETTINGS:
                value = _ENUM_SETTINGS[name](value)
            elif name == "timezone":
                value = str(value)
            else:
                value = bool(value)
            changes[name] = value
        return replace(self, version=self.version + 1, **changes)


_ENUM_SETTINGS = MappingProxyType({
    "view_mode": ViewMode,
    "reminder_strategy": ReminderStrategy,
})

PATCHABLE_SETTINGS = frozenset(f.name for f in fields(AppSettings)) - {"version"}


def _coerce_spoiler(current: SpoilerConfig, value: Any) -> SpoilerConfig:
    if isinstance(value, SpoilerConfig):
        return value
    data = dict(value)
    unknown = set(data) - {f.name for f in fields(SpoilerConfig)}
    if unknown:
        raise ValueError(f"Unknown spoiler settings: {', '.join(sorted(unknown))}")
    if "replacement_mode" in data:
        data["replacement_mode"] = ReplacementMode(data["replacement_mode"])
    return replace(current, **data)


def _coerce_hidden(value: Any) -> HiddenItem:
    if isinstance(value, HiddenItem):
        return value
    media_type = value.get("media_type")
    return HiddenItem(
        id=int(value["id"]),
        name=value.get("name", ""),
        media_type=MediaKind(media_type) if media_type else None,
    )


# ── Sync ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SyncProgress:
    current: int
    total: int

    def __post_init__(self):
        if not 0 <= self.current <= self.total:
            raise ValueError(f"Progress {self.current}/{self.total} out of range")

    @property
    def done(self) -> bool:
        return self.current == self.total


# ── Helpers ──────────────────────────────────────────────────────

def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse the date part of a TMDB date or timestamp string. Blank/garbage -> None."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None

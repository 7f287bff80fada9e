"""Calendar index: date-keyed view over fetched episodes.

The index is a pure function of the fetched episodes and is rebuilt, never
patched. User settings are applied at read time by `project`, so toggling
a filter never needs a refetch.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence, Union

from airdate.models.domain import (
    AppSettings, Episode, LibraryKey, ReleaseType,
)

CalendarIndex = Mapping[str, tuple[Episode, ...]]

EMPTY_INDEX: CalendarIndex = MappingProxyType({})

GRID_CELLS = 42   # six Sunday-first weeks


@dataclass(frozen=True)
class ViewFilters:
    """Per-view toggles that are not persisted in settings."""
    show_tv: bool = True
    show_movies: bool = True
    show_hidden: bool = False


@dataclass(frozen=True)
class CalendarDay:
    date: date
    episodes: tuple[Episode, ...]
    is_current_month: bool
    is_today: bool


def date_key(day: Union[date, str]) -> str:
    if isinstance(day, str):
        return day
    return day.isoformat()


def build_index(episodes_by_show: Mapping[LibraryKey, Sequence[Episode]]) -> CalendarIndex:
    """Group episodes by air date.

    Within a day, shows appear in the mapping's order and each show's
    episodes keep their fetch order. Duplicates are kept as-is.
    """
    grouped: dict[str, list[Episode]] = {}
    for episodes in episodes_by_show.values():
        for ep in episodes:
            if ep.air_date is None:
                continue
            grouped.setdefault(date_key(ep.air_date), []).append(ep)
    return MappingProxyType({day: tuple(eps) for day, eps in grouped.items()})


def project(
    index: CalendarIndex,
    day: Union[date, str],
    settings: AppSettings,
    view: Optional[ViewFilters] = None,
) -> list[Episode]:
    """Entries for one day after settings and view filters, in stored order."""
    view = view or ViewFilters()
    hidden = settings.hidden_keys
    return [
        ep for ep in index.get(date_key(day), ())
        if _visible(ep, settings, view, hidden)
    ]


def _visible(ep: Episode, settings: AppSettings, view: ViewFilters, hidden: frozenset[LibraryKey]) -> bool:
    if settings.hide_theatrical and ep.is_movie and ep.release_type is ReleaseType.THEATRICAL:
        return False
    if settings.ignore_specials and ep.is_special:
        return False
    if ep.is_movie and not view.show_movies:
        return False
    if not ep.is_movie and not view.show_tv:
        return False
    if ep.library_key in hidden and not view.show_hidden:
        return False
    return True


def month_grid(
    index: CalendarIndex,
    month: date,
    settings: AppSettings,
    view: Optional[ViewFilters] = None,
    today: Optional[date] = None,
) -> list[CalendarDay]:
    """The 42-cell grid for the month containing `month`, starting on a Sunday."""
    today = today or date.today()
    first = month.replace(day=1)
    start = first - timedelta(days=(first.weekday() + 1) % 7)
    cells = []
    for offset in range(GRID_CELLS):
        day = start + timedelta(days=offset)
        cells.append(CalendarDay(
            date=day,
            episodes=tuple(project(index, day, settings, view)),
            is_current_month=(day.year, day.month) == (first.year, first.month),
            is_today=day == today,
        ))
    return cells


def agenda(
    index: CalendarIndex,
    day: Union[date, str],
    settings: AppSettings,
    view: Optional[ViewFilters] = None,
) -> list[tuple[LibraryKey, list[Episode]]]:
    """A day's visible entries grouped by show, shows in first-seen order."""
    groups: dict[LibraryKey, list[Episode]] = {}
    for ep in project(index, day, settings, view):
        groups.setdefault(ep.library_key, []).append(ep)
    return list(groups.items())


def days_with_entries(index: CalendarIndex, start: date, end: date) -> Iterable[str]:
    """Sorted date-keys within [start, end] that have at least one stored entry."""
    lo, hi = date_key(start), date_key(end)
    return sorted(k for k in index if lo <= k <= hi)

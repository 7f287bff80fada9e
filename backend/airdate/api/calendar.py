"""Calendar endpoints: day, month grid and agenda views."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from airdate.api.deps import get_store
from airdate.models.domain import Episode, parse_date
from airdate.services.calendar_indexer import ViewFilters, agenda, month_grid, project
from airdate.services.entity_store import EntityStore

router = APIRouter()

IMAGE_BASE = "https://image.tmdb.org/t/p"


def view_filters(show_tv: bool = True, show_movies: bool = True, show_hidden: bool = False) -> ViewFilters:
    return ViewFilters(show_tv=show_tv, show_movies=show_movies, show_hidden=show_hidden)


def _parse_day(value: str) -> date:
    day = parse_date(value)
    if day is None or len(value) != 10:
        raise HTTPException(422, f"Expected a YYYY-MM-DD date, got '{value}'")
    return day


def episode_out(ep: Episode, store: EntityStore) -> dict:
    key = ep.interaction_key
    return {
        "id": ep.id,
        "show_id": ep.show_id,
        "show_name": ep.show_name,
        "name": ep.name,
        "air_date": ep.air_date.isoformat() if ep.air_date else None,
        "season_number": ep.season_number,
        "episode_number": ep.episode_number,
        "overview": ep.overview,
        "still_url": f"{IMAGE_BASE}/w300{ep.still_path}" if ep.still_path else None,
        "poster_url": f"{IMAGE_BASE}/w500{ep.poster_path}" if ep.poster_path else None,
        "is_movie": ep.is_movie,
        "release_type": ep.release_type.value if ep.release_type else None,
        "interaction_key": key.legacy,
        "is_watched": store.is_watched(key),
    }


@router.get("/calendar/day/{day}")
async def get_day(
    day: str,
    view: ViewFilters = Depends(view_filters),
    store: EntityStore = Depends(get_store),
):
    """Visible entries for one day, in stored order."""
    parsed = _parse_day(day)
    entries = project(store.calendar_index, parsed, store.settings, view)
    return {"date": parsed.isoformat(), "entries": [episode_out(ep, store) for ep in entries]}


@router.get("/calendar/month/{month}")
async def get_month(
    month: str,
    today: Optional[str] = None,
    view: ViewFilters = Depends(view_filters),
    store: EntityStore = Depends(get_store),
):
    """The 42-cell Sunday-first grid around a YYYY-MM month."""
    first = parse_date(f"{month}-01") if len(month) == 7 else None
    if first is None:
        raise HTTPException(422, f"Expected a YYYY-MM month, got '{month}'")
    cells = month_grid(
        store.calendar_index,
        first,
        store.settings,
        view,
        today=_parse_day(today) if today else None,
    )
    return {
        "month": month,
        "days": [
            {
                "date": cell.date.isoformat(),
                "is_current_month": cell.is_current_month,
                "is_today": cell.is_today,
                "entries": [episode_out(ep, store) for ep in cell.episodes],
            }
            for cell in cells
        ],
    }


@router.get("/calendar/agenda/{day}")
async def get_agenda(
    day: str,
    view: ViewFilters = Depends(view_filters),
    store: EntityStore = Depends(get_store),
):
    """One day's entries grouped by show (list view)."""
    parsed = _parse_day(day)
    groups = agenda(store.calendar_index, parsed, store.settings, view)
    return {
        "date": parsed.isoformat(),
        "groups": [
            {"key": str(key), "show_name": eps[0].show_name, "entries": [episode_out(ep, store) for ep in eps]}
            for key, eps in groups
        ],
    }

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from airdate.clients.base import ICatalog, IStateStorage, MovieRelease, SeasonInfo, ShowDetails  # noqa: E402
from airdate.models.domain import Episode, LibraryItem, MediaKind  # noqa: E402
from airdate.services.entity_store import EntityStore  # noqa: E402


def show(show_id: int, name: str = "", **kw: Any) -> LibraryItem:
    return LibraryItem(id=show_id, media_type=MediaKind.TV, name=name or f"Show {show_id}", **kw)


def movie(movie_id: int, name: str = "", **kw: Any) -> LibraryItem:
    return LibraryItem(id=movie_id, media_type=MediaKind.MOVIE, name=name or f"Movie {movie_id}", **kw)


def episode(show_id: int, season: int, number: int, air_date: Optional[date], **kw: Any) -> Episode:
    return Episode(
        show_id=show_id,
        id=show_id * 10000 + season * 100 + number,
        name=f"S{season:02d}E{number:02d}",
        air_date=air_date,
        season_number=season,
        episode_number=number,
        **kw,
    )


def media_dict(item_id: int, media_type: str = "tv", name: str = "") -> dict[str, Any]:
    return {"id": item_id, "media_type": media_type, "name": name or f"{media_type} {item_id}"}


@dataclass
class FakeCatalog(ICatalog):
    """In-memory catalog. `episodes` is keyed by show id, `releases` by movie id."""
    episodes: dict[int, list[Episode]] = field(default_factory=dict)
    releases: dict[int, list[MovieRelease]] = field(default_factory=dict)
    failing: set[int] = field(default_factory=set)
    failing_seasons: set[tuple[int, int]] = field(default_factory=set)
    search_results: list[LibraryItem] = field(default_factory=list)
    calls: list[int] = field(default_factory=list)

    def _check(self, tmdb_id: int) -> None:
        self.calls.append(tmdb_id)
        if tmdb_id in self.failing:
            raise RuntimeError(f"catalog unavailable for {tmdb_id}")

    async def fetch_show_details(self, show_id: int) -> ShowDetails:
        self._check(show_id)
        seasons = sorted({ep.season_number for ep in self.episodes.get(show_id, [])})
        return ShowDetails(id=show_id, name=f"Show {show_id}", seasons=[SeasonInfo(s) for s in seasons])

    async def fetch_season(self, show_id: int, season_number: int) -> list[Episode]:
        if (show_id, season_number) in self.failing_seasons:
            raise RuntimeError(f"season {season_number} unavailable")
        return [ep for ep in self.episodes.get(show_id, []) if ep.season_number == season_number]

    async def fetch_movie_releases(self, movie_id: int) -> list[MovieRelease]:
        self._check(movie_id)
        return list(self.releases.get(movie_id, []))

    async def search_shows(self, query: str) -> list[LibraryItem]:
        return [i for i in self.search_results if query.lower() in i.name.lower()]

    async def get_popular_shows(self) -> list[LibraryItem]:
        return list(self.search_results)


@dataclass
class FakeStorage(IStateStorage):
    blobs: dict[str, dict] = field(default_factory=dict)
    fail: bool = False
    persist_calls: int = 0

    async def authenticate(self, username: str, secret: Optional[str] = None) -> str:
        return f"user-{username}"

    async def persist(self, user_id: str, blob: dict) -> None:
        self.persist_calls += 1
        if self.fail:
            raise ConnectionError("storage offline")
        self.blobs[user_id] = blob

    async def load(self, user_id: str) -> Optional[dict]:
        return self.blobs.get(user_id)


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture()
def store() -> EntityStore:
    return EntityStore()


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()

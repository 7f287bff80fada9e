"""Abstract interfaces for the content catalog and state storage backends.

These define the contracts the sync pipeline and API depend on.
TMDB is the catalog implementation; storage is either the local database
or the Supabase cloud backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from airdate.models.domain import Episode, LibraryItem


# ── Data Transfer Objects ────────────────────────────────────────

@dataclass
class SeasonInfo:
    """Season metadata from a show details response."""
    season_number: int
    episode_count: int = 0
    poster_path: Optional[str] = None
    air_date: Optional[str] = None


@dataclass
class ShowDetails:
    """A TV show with its season list."""
    id: int
    name: str
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    overview: str = ""
    first_air_date: Optional[str] = None
    vote_average: Optional[float] = None
    origin_country: list[str] = field(default_factory=list)
    seasons: list[SeasonInfo] = field(default_factory=list)


@dataclass
class MovieRelease:
    """One dated release of a movie in one country."""
    date: str                 # YYYY-MM-DD
    type: str                 # "theatrical" | "digital" | "physical" | "premiere"
    country: str


# ── Abstract Interfaces ──────────────────────────────────────────

class ICatalog(ABC):
    """Interface for the remote content catalog."""

    @abstractmethod
    async def fetch_show_details(self, show_id: int) -> ShowDetails:
        """Show details including season metadata."""
        ...

    @abstractmethod
    async def fetch_season(self, show_id: int, season_number: int) -> list[Episode]:
        """All episodes of one season."""
        ...

    @abstractmethod
    async def fetch_movie_releases(self, movie_id: int) -> list[MovieRelease]:
        """Release dates of a movie, earliest first."""
        ...

    @abstractmethod
    async def search_shows(self, query: str) -> list[LibraryItem]:
        """Search TV shows and movies by title."""
        ...

    @abstractmethod
    async def get_popular_shows(self) -> list[LibraryItem]:
        """Currently popular TV shows."""
        ...


class IStateStorage(ABC):
    """Interface for wherever encoded user state is kept."""

    @abstractmethod
    async def authenticate(self, username: str, secret: Optional[str] = None) -> str:
        """Sign in and return the id state is stored under."""
        ...

    @abstractmethod
    async def persist(self, user_id: str, blob: dict) -> None:
        """Store an encoded backup payload."""
        ...

    @abstractmethod
    async def load(self, user_id: str) -> Optional[dict]:
        """Load the last stored payload, if any."""
        ...

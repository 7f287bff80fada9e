"""TMDB client: show/season/movie-release fetching and search.

Normalizes TMDB responses into library items and calendar episodes.
"""

import asyncio
import httpx
from typing import Optional

from airdate.clients.base import ICatalog, MovieRelease, SeasonInfo, ShowDetails
from airdate.models.domain import Episode, LibraryItem, MediaKind, parse_date


# TMDB release_dates type codes
RELEASE_TYPES = {1: "premiere", 2: "theatrical", 3: "theatrical", 4: "digital", 5: "physical"}


class TmdbClient(ICatalog):
    """The Movie Database API v3 client."""

    BASE_URL = "https://api.themoviedb.org/3"
    IMAGE_BASE = "https://image.tmdb.org/t/p"

    def __init__(
        self,
        api_key: str,
        language: str = "en-US",
        timeout: float = 15.0,
        max_concurrent: int = 4,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.language = language
        self.timeout = timeout
        self._transport = transport
        # Detect auth mode: JWT (v4 bearer) vs plain key (v3 query param)
        self._is_bearer = api_key.startswith("eyJ")
        # Caps in-flight requests regardless of how many callers fan out
        self._slots = asyncio.Semaphore(max_concurrent)

    async def _get(self, path: str, params: dict | None = None) -> dict:
        """Make authenticated GET request to TMDB.

        Supports both v3 (api_key query param) and v4 (Bearer token header).
        """
        all_params = {"language": self.language, **(params or {})}
        headers = {}

        if self._is_bearer:
            headers["Authorization"] = f"Bearer {self.api_key}"
        else:
            all_params["api_key"] = self.api_key

        async with self._slots:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.BASE_URL}{path}", params=all_params, headers=headers)
                resp.raise_for_status()
                return resp.json()

    # ── TV ───────────────────────────────────────────────────────

    async def fetch_show_details(self, show_id: int) -> ShowDetails:
        data = await self._get(f"/tv/{show_id}")
        return ShowDetails(
            id=data["id"],
            name=data.get("name", ""),
            poster_path=data.get("poster_path"),
            backdrop_path=data.get("backdrop_path"),
            overview=data.get("overview") or "",
            first_air_date=data.get("first_air_date") or None,
            vote_average=data.get("vote_average"),
            origin_country=data.get("origin_country") or [],
            seasons=[
                SeasonInfo(
                    season_number=s["season_number"],
                    episode_count=s.get("episode_count", 0),
                    poster_path=s.get("poster_path"),
                    air_date=s.get("air_date"),
                )
                for s in data.get("seasons", [])
            ],
        )

    async def fetch_season(self, show_id: int, season_number: int) -> list[Episode]:
        data = await self._get(f"/tv/{show_id}/season/{season_number}")
        return [
            Episode(
                show_id=show_id,
                id=e["id"],
                name=e.get("name", ""),
                air_date=parse_date(e.get("air_date")),
                season_number=e.get("season_number", season_number),
                episode_number=e.get("episode_number"),
                overview=e.get("overview") or "",
                still_path=e.get("still_path"),
                poster_path=data.get("poster_path"),
            )
            for e in data.get("episodes", [])
        ]

    # ── Movies ───────────────────────────────────────────────────

    async def fetch_movie_releases(self, movie_id: int) -> list[MovieRelease]:
        """Per release type: the US date plus the earliest date worldwide."""
        data = await self._get(f"/movie/{movie_id}/release_dates")
        return self._normalize_releases(data.get("results", []))

    @staticmethod
    def _normalize_releases(results: list[dict]) -> list[MovieRelease]:
        by_type: dict[str, list[MovieRelease]] = {}
        for country in results:
            code = country.get("iso_3166_1", "")
            for entry in country.get("release_dates", []):
                type_name = RELEASE_TYPES.get(entry.get("type"))
                released = parse_date(entry.get("release_date"))
                if type_name and released:
                    by_type.setdefault(type_name, []).append(
                        MovieRelease(date=released.isoformat(), type=type_name, country=code)
                    )

        picked: list[MovieRelease] = []
        for candidates in by_type.values():
            candidates.sort(key=lambda r: r.date)
            us = next((r for r in candidates if r.country == "US"), None)
            earliest = candidates[0]
            if us:
                picked.append(us)
            if earliest is not us and earliest.country != "US":
                picked.append(earliest)

        unique = {(r.type, r.date, r.country): r for r in picked}
        return sorted(unique.values(), key=lambda r: r.date)

    # ── Search / Discovery ───────────────────────────────────────

    async def search_shows(self, query: str) -> list[LibraryItem]:
        """Search movies + TV in one call; people are dropped."""
        data = await self._get("/search/multi", {"query": query})
        return [
            self._normalize_item(r)
            for r in data.get("results", [])
            if r.get("media_type") in ("tv", "movie")
        ]

    async def get_popular_shows(self) -> list[LibraryItem]:
        data = await self._get("/trending/all/week")
        return [
            self._normalize_item(r)
            for r in data.get("results", [])
            if r.get("media_type", "tv") in ("tv", "movie")
        ]

    # ── Test connection ──────────────────────────────────────────

    async def test_connection(self) -> bool:
        """Test TMDB API key validity."""
        try:
            await self._get("/configuration")
            return True
        except httpx.HTTPError:
            return False

    # ── Normalization helpers ────────────────────────────────────

    @staticmethod
    def _normalize_item(data: dict) -> LibraryItem:
        """Map a TMDB search/trending result onto a library item."""
        media_type = data.get("media_type") or ("movie" if data.get("title") else "tv")
        return LibraryItem(
            id=data["id"],
            media_type=MediaKind(media_type),
            name=data.get("title") or data.get("name") or "",
            poster_path=data.get("poster_path"),
            first_air_date=data.get("release_date") or data.get("first_air_date") or None,
            backdrop_path=data.get("backdrop_path"),
            overview=data.get("overview") or "",
            vote_average=data.get("vote_average"),
        )

    # ── Image URL helpers ────────────────────────────────────────

    @classmethod
    def poster_url(cls, path: Optional[str], size: str = "w500") -> Optional[str]:
        """Build full poster URL from TMDB path."""
        if not path:
            return None
        return f"{cls.IMAGE_BASE}/{size}{path}"

from __future__ import annotations

import asyncio
import json
from datetime import date

import httpx
import pytest

from airdate.clients.supabase import SupabaseStorage
from airdate.clients.tmdb import TmdbClient
from airdate.models.domain import MediaKind


def _tmdb(routes: dict[str, dict], seen: list[httpx.Request] | None = None, key: str = "abc123") -> TmdbClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        path = request.url.path.removeprefix("/3")
        if path not in routes:
            return httpx.Response(404, json={"status_message": "not found"})
        return httpx.Response(200, json=routes[path])

    return TmdbClient(key, transport=httpx.MockTransport(handler))


def test_v3_key_goes_in_query() -> None:
    seen: list[httpx.Request] = []
    asyncio.run(_tmdb({"/configuration": {}}, seen).test_connection())
    assert seen[0].url.params["api_key"] == "abc123"
    assert "authorization" not in seen[0].headers


def test_v4_token_goes_in_header() -> None:
    seen: list[httpx.Request] = []
    asyncio.run(_tmdb({"/configuration": {}}, seen, key="eyJtoken").test_connection())
    assert seen[0].headers["authorization"] == "Bearer eyJtoken"
    assert "api_key" not in seen[0].url.params


def test_test_connection_false_on_error() -> None:
    assert asyncio.run(_tmdb({}).test_connection()) is False


def test_fetch_show_details_and_season() -> None:
    client = _tmdb({
        "/tv/10": {"id": 10, "name": "Ten", "seasons": [{"season_number": 0}, {"season_number": 1, "episode_count": 2}]},
        "/tv/10/season/1": {"poster_path": "/s1.jpg", "episodes": [
            {"id": 101, "name": "Pilot", "air_date": "2024-01-07", "season_number": 1, "episode_number": 1},
            {"id": 102, "name": "TBA", "air_date": None, "season_number": 1, "episode_number": 2},
        ]},
    })
    details = asyncio.run(client.fetch_show_details(10))
    assert [s.season_number for s in details.seasons] == [0, 1]

    episodes = asyncio.run(client.fetch_season(10, 1))
    assert [(e.id, e.air_date) for e in episodes] == [(101, date(2024, 1, 7)), (102, None)]
    assert episodes[0].poster_path == "/s1.jpg"


def test_fetch_season_raises_on_http_error() -> None:
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(_tmdb({}).fetch_season(10, 1))


def test_movie_releases_keep_us_and_earliest_per_type() -> None:
    client = _tmdb({"/movie/5/release_dates": {"results": [
        {"iso_3166_1": "US", "release_dates": [
            {"type": 3, "release_date": "2024-05-10T00:00:00.000Z"},
            {"type": 4, "release_date": "2024-07-01T00:00:00.000Z"},
        ]},
        {"iso_3166_1": "AU", "release_dates": [
            {"type": 3, "release_date": "2024-05-02T00:00:00.000Z"},
            {"type": 6, "release_date": "2024-05-01T00:00:00.000Z"},
        ]},
        {"iso_3166_1": "DE", "release_dates": [
            {"type": 3, "release_date": "2024-05-20T00:00:00.000Z"},
        ]},
    ]}})
    releases = asyncio.run(client.fetch_movie_releases(5))
    assert [(r.date, r.type, r.country) for r in releases] == [
        ("2024-05-02", "theatrical", "AU"),
        ("2024-05-10", "theatrical", "US"),
        ("2024-07-01", "digital", "US"),
    ]


def test_search_drops_people_and_normalizes_titles() -> None:
    client = _tmdb({"/search/multi": {"results": [
        {"id": 1, "media_type": "movie", "title": "Film", "release_date": "2024-02-02"},
        {"id": 2, "media_type": "person", "name": "Someone"},
        {"id": 3, "media_type": "tv", "name": "Series", "first_air_date": "2023-09-09"},
    ]}})
    items = asyncio.run(client.search_shows("x"))
    assert [(i.id, i.media_type, i.name, i.first_air_date) for i in items] == [
        (1, MediaKind.MOVIE, "Film", "2024-02-02"),
        (3, MediaKind.TV, "Series", "2023-09-09"),
    ]


def test_poster_url() -> None:
    assert TmdbClient.poster_url("/a.jpg") == "https://image.tmdb.org/t/p/w500/a.jpg"
    assert TmdbClient.poster_url(None) is None


# ── Supabase ─────────────────────────────────────────────────────

def _supabase(handler) -> SupabaseStorage:
    return SupabaseStorage("https://proj.supabase.co/", "anon", transport=httpx.MockTransport(handler))


def test_supabase_sign_in_then_persist_uses_access_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/auth/v1/token":
            return httpx.Response(200, json={"access_token": "tok", "user": {"id": "u-1"}})
        return httpx.Response(201)

    storage = _supabase(handler)

    async def go():
        user_id = await storage.authenticate("a@b.c", "pw")
        await storage.persist(user_id, {"user": {"username": "a"}})
        return user_id

    assert asyncio.run(go()) == "u-1"
    assert seen[0].url.params["grant_type"] == "password"
    upsert = seen[1]
    assert upsert.url.path == "/rest/v1/profiles"
    assert upsert.headers["authorization"] == "Bearer tok"
    assert upsert.headers["prefer"] == "resolution=merge-duplicates"
    assert json.loads(upsert.content) == {"id": "u-1", "backup": {"user": {"username": "a"}}}


def test_supabase_load_missing_row_is_none() -> None:
    storage = _supabase(lambda request: httpx.Response(200, json=[]))
    assert asyncio.run(storage.load("u-1")) is None


def test_supabase_load_returns_backup_column() -> None:
    storage = _supabase(lambda request: httpx.Response(200, json=[{"backup": {"user": {"username": "a"}}}]))
    assert asyncio.run(storage.load("u-1")) == {"user": {"username": "a"}}

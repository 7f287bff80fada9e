from __future__ import annotations

import json
from datetime import date

import pytest
from fastapi.testclient import TestClient

from airdate.api.deps import install
from airdate.main import app
from airdate.models.domain import InteractionKey, LibraryKey, MediaKind
from airdate.services.entity_store import EntityStore
from airdate.services.sync_engine import SyncEngine

from conftest import FakeCatalog, FakeStorage, episode, media_dict, no_sleep, show

PREFIX = "/api/v1"


def _sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog(episodes={
        1: [episode(1, 1, 1, date(2024, 3, 5)), episode(1, 1, 2, date(2024, 3, 12))],
        2: [episode(2, 1, 1, date(2024, 3, 5))],
        3: [episode(3, 1, 1, date(2024, 3, 6))],
    }, search_results=[show(1, "Severance"), show(2, "Slow Horses")])


@pytest.fixture()
def engine(store: EntityStore, catalog: FakeCatalog) -> SyncEngine:
    return SyncEngine(store, catalog, storage=FakeStorage(), storage_key="local", batch_delay=0.5, sleep=no_sleep)


@pytest.fixture()
def client(store: EntityStore, catalog: FakeCatalog, engine: SyncEngine) -> TestClient:
    install(app, store=store, catalog=catalog, engine=engine)
    return TestClient(app)


def test_health_reports_library_size(client: TestClient, store: EntityStore) -> None:
    store.add_to_watchlist(show(1))
    data = client.get(f"{PREFIX}/health").json()
    assert data["status"] == "ok"
    assert data["library_size"] == 1
    assert data["sync_running"] is False


# ── Library ──────────────────────────────────────────────────────

def test_add_to_library_fetches_dates_and_asks_about_reminders(client: TestClient, store: EntityStore) -> None:
    r = client.post(f"{PREFIX}/library", json=media_dict(1, name="Severance"))
    assert r.status_code == 200
    data = r.json()
    assert data["added"] is True
    assert data["fetched"] is True
    assert data["resolution"] == {"outcome": "prompt", "reminder": None}
    assert set(store.calendar_index) == {"2024-03-05", "2024-03-12"}

    again = client.post(f"{PREFIX}/library", json=media_dict(1, name="Severance")).json()
    assert again["added"] is False


def test_add_with_always_strategy_commits_reminder(client: TestClient, store: EntityStore) -> None:
    store.update_settings({"reminder_strategy": "always"})
    data = client.post(f"{PREFIX}/library", json=media_dict(2)).json()
    assert data["resolution"]["outcome"] == "auto_commit"
    assert data["resolution"]["reminder"]["scope"] == "all"
    assert len(client.get(f"{PREFIX}/reminders").json()["reminders"]) == 1


def test_remove_from_library(client: TestClient, store: EntityStore) -> None:
    store.add_to_watchlist(show(1))
    assert client.delete(f"{PREFIX}/library/tv/1").status_code == 200
    assert client.delete(f"{PREFIX}/library/tv/1").status_code == 404
    assert store.watchlist == ()


def test_subscribe_list_fetches_items(client: TestClient, store: EntityStore) -> None:
    r = client.post(f"{PREFIX}/library/lists", json={"id": 5, "name": "Picks", "items": [media_dict(3)]})
    assert r.json() == {"subscribed": "5", "items": 1, "failed": 0}
    assert "2024-03-06" in store.calendar_index
    assert client.get(f"{PREFIX}/library").json()["subscribed_lists"][0]["items"][0]["id"] == 3

    assert client.delete(f"{PREFIX}/library/lists/5").status_code == 200
    assert "2024-03-06" not in store.calendar_index
    assert client.delete(f"{PREFIX}/library/lists/5").status_code == 404


def test_search(client: TestClient) -> None:
    results = client.get(f"{PREFIX}/library/search", params={"q": "slow"}).json()["results"]
    assert [r["name"] for r in results] == ["Slow Horses"]


# ── Interactions ─────────────────────────────────────────────────

def test_toggle_watched(client: TestClient, store: EntityStore) -> None:
    body = {"tmdb_id": 1, "media_type": "episode", "season_number": 1, "episode_number": 1}
    assert client.post(f"{PREFIX}/interactions/toggle", json=body).json()["is_watched"] is True
    assert store.is_watched(InteractionKey.for_episode(1, 1, 1))
    assert client.post(f"{PREFIX}/interactions/toggle", json=body).json()["is_watched"] is False


def test_toggle_episode_without_numbers_is_rejected(client: TestClient) -> None:
    r = client.post(f"{PREFIX}/interactions/toggle", json={"tmdb_id": 1, "media_type": "episode"})
    assert r.status_code == 422


def test_bulk_mark_watched(client: TestClient) -> None:
    items = [{"tmdb_id": 1, "media_type": "episode", "season_number": 1, "episode_number": n} for n in (1, 2)]
    items.append({"tmdb_id": 7, "media_type": "movie"})
    assert client.post(f"{PREFIX}/interactions/bulk", json={"items": items}).json() == {"changed": 3, "total": 3}
    assert client.post(f"{PREFIX}/interactions/bulk", json={"items": items}).json()["changed"] == 0
    assert set(client.get(f"{PREFIX}/interactions").json()) == {"episode-1-1-1", "episode-1-1-2", "movie-7"}


def test_rating_is_on_a_five_point_scale(client: TestClient) -> None:
    body = {"tmdb_id": 7, "media_type": "movie", "rating": 4.5}
    assert client.post(f"{PREFIX}/interactions/rating", json=body).json() == {"key": "movie-7", "rating": 4.5}
    assert client.post(f"{PREFIX}/interactions/rating", json={**body, "rating": 7}).status_code == 422


# ── Calendar ─────────────────────────────────────────────────────

def _seed_calendar(store: EntityStore) -> None:
    store.add_to_watchlist(show(1))
    store.add_to_watchlist(show(2))
    store.set_episodes(show(1).key, [episode(1, 1, 1, date(2024, 3, 5)), episode(1, 0, 1, date(2024, 3, 5))])
    store.set_episodes(show(2).key, [episode(2, 1, 1, date(2024, 3, 5))])
    store.rebuild_index()


def test_calendar_day_applies_settings_and_view(client: TestClient, store: EntityStore) -> None:
    _seed_calendar(store)
    day = client.get(f"{PREFIX}/calendar/day/2024-03-05").json()
    assert len(day["entries"]) == 3

    store.update_settings({"ignore_specials": True, "hidden_items": [{"id": 2, "name": "Two"}]})
    day = client.get(f"{PREFIX}/calendar/day/2024-03-05").json()
    assert [(e["show_id"], e["season_number"]) for e in day["entries"]] == [(1, 1)]

    revealed = client.get(f"{PREFIX}/calendar/day/2024-03-05", params={"show_hidden": True}).json()
    assert len(revealed["entries"]) == 2


def test_calendar_month_has_42_days(client: TestClient, store: EntityStore) -> None:
    _seed_calendar(store)
    data = client.get(f"{PREFIX}/calendar/month/2024-03", params={"today": "2024-03-05"}).json()
    assert len(data["days"]) == 42
    assert data["days"][0]["date"] == "2024-02-25"
    today = next(d for d in data["days"] if d["is_today"])
    assert len(today["entries"]) == 3


def test_calendar_agenda_groups_by_show(client: TestClient, store: EntityStore) -> None:
    _seed_calendar(store)
    groups = client.get(f"{PREFIX}/calendar/agenda/2024-03-05").json()["groups"]
    assert [(g["key"], len(g["entries"])) for g in groups] == [("tv:1", 2), ("tv:2", 1)]


@pytest.mark.parametrize("path", ["/calendar/day/2024-13-01", "/calendar/day/tomorrow", "/calendar/month/2024"])
def test_calendar_rejects_bad_dates(client: TestClient, path: str) -> None:
    assert client.get(f"{PREFIX}{path}").status_code == 422


# ── Reminders ────────────────────────────────────────────────────

def test_answer_prompt_always_changes_strategy(client: TestClient, store: EntityStore) -> None:
    client.post(f"{PREFIX}/library", json=media_dict(1))
    r = client.post(f"{PREFIX}/reminders/answer", json={"tmdb_id": 1, "media_type": "tv", "choice": "always"})
    assert r.json()["outcome"] == "auto_commit"
    assert client.get(f"{PREFIX}/settings").json()["reminderStrategy"] == "always"


def test_answer_for_unknown_item_is_404(client: TestClient) -> None:
    r = client.post(f"{PREFIX}/reminders/answer", json={"tmdb_id": 99, "media_type": "tv", "choice": "confirm"})
    assert r.status_code == 404


def test_create_and_delete_reminder(client: TestClient) -> None:
    body = {"tmdb_id": 1, "media_type": "tv", "scope": "all", "offset_minutes": 1440}
    created = client.post(f"{PREFIX}/reminders", json=body).json()
    duplicate = client.post(f"{PREFIX}/reminders", json=body).json()
    assert duplicate["id"] == created["id"]
    assert client.delete(f"{PREFIX}/reminders/{created['id']}").status_code == 200
    assert client.delete(f"{PREFIX}/reminders/{created['id']}").status_code == 404


def test_create_reminder_with_wrong_scope_is_rejected(client: TestClient) -> None:
    r = client.post(f"{PREFIX}/reminders", json={"tmdb_id": 1, "media_type": "tv", "scope": "movie_digital"})
    assert r.status_code == 422


# ── Settings ─────────────────────────────────────────────────────

def test_patch_settings(client: TestClient, store: EntityStore) -> None:
    data = client.patch(f"{PREFIX}/settings", json={"hideTheatrical": True, "spoilerConfig": {"images": True}}).json()
    assert data["hideTheatrical"] is True
    assert data["spoilerConfig"]["images"] is True
    assert data["spoilerConfig"]["overview"] is False
    assert data["version"] == 1
    assert store.settings.hide_theatrical


@pytest.mark.parametrize("patch", [{"colour": "red"}, {"viewMode": "cards"}, {}])
def test_patch_settings_rejects_bad_input(client: TestClient, patch: dict) -> None:
    assert client.patch(f"{PREFIX}/settings", json=patch).status_code == 422


# ── Sync ─────────────────────────────────────────────────────────

def _backup(count: int) -> dict:
    return {"user": {"username": "sam"}, "watchlist": [media_dict(i) for i in range(1, count + 1)]}


def test_estimate(client: TestClient) -> None:
    assert client.get(f"{PREFIX}/sync/estimate", params={"count": 480}).json()["estimate"] == "1 minutes"
    assert client.get(f"{PREFIX}/sync/estimate", params={"count": 5}).json()["estimate"] == "1 seconds"


def test_import_streams_progress(client: TestClient, store: EntityStore, engine: SyncEngine) -> None:
    r = client.post(f"{PREFIX}/sync/import", content=json.dumps(_backup(3)))
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(r.text)
    assert events[0] == ("progress", {"current": 3, "total": 3})
    assert events[-1][0] == "complete"
    assert events[-1][1]["fetched"] == 3
    assert len(store.watchlist) == 3
    assert "local" in engine.storage.blobs


def test_import_reports_skipped_items(client: TestClient, catalog: FakeCatalog) -> None:
    catalog.failing = {2}
    events = _sse_events(client.post(f"{PREFIX}/sync/import", content=json.dumps(_backup(6))).text)
    assert [e[1]["current"] for e in events if e[0] == "progress"] == [4, 6]
    assert events[-1][1]["failed"] == ["tv:2"]


def test_import_rejects_invalid_backup_before_streaming(client: TestClient, store: EntityStore) -> None:
    r = client.post(f"{PREFIX}/sync/import", content='{"watchlist": []}')
    assert r.status_code == 422
    assert store.watchlist == ()


def test_import_while_running_is_409(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(SyncEngine, "is_running", property(lambda self: True))
    assert client.post(f"{PREFIX}/sync/import", content=json.dumps(_backup(1))).status_code == 409


def test_import_without_titles_still_completes(client: TestClient, store: EntityStore) -> None:
    backup = {**_backup(0), "settings": {"hideTheatrical": True}}
    events = _sse_events(client.post(f"{PREFIX}/sync/import", content=json.dumps(backup)).text)
    assert events == [
        ("progress", {"current": 0, "total": 0}),
        ("complete", {"total": 0, "fetched": 0, "skipped": 0, "failed": []}),
    ]
    assert store.settings.hide_theatrical


def test_stream_replays_the_last_run(client: TestClient) -> None:
    assert client.get(f"{PREFIX}/sync/stream").status_code == 404
    client.post(f"{PREFIX}/sync/import", content=json.dumps(_backup(5)))
    events = _sse_events(client.get(f"{PREFIX}/sync/stream").text)
    assert [e[1]["current"] for e in events if e[0] == "progress"] == [4, 5]
    assert events[-1] == ("complete", {"total": 5, "fetched": 5, "skipped": 0, "failed": []})


def test_merge_import_and_preview(client: TestClient, store: EntityStore) -> None:
    store.add_to_watchlist(show(1))
    preview = client.post(f"{PREFIX}/sync/preview", content=json.dumps(_backup(3))).json()
    assert preview == {"match_count": 1, "new_shows": 2, "new_lists": 0, "total_new": 2}

    r = client.post(f"{PREFIX}/sync/import", params={"mode": "merge"}, content=json.dumps(_backup(3)))
    assert _sse_events(r.text)[0][1] == {"current": 2, "total": 2}
    assert len(store.watchlist) == 3


def test_sync_payload_export_and_apply(client: TestClient, store: EntityStore) -> None:
    store.add_to_watchlist(show(1))
    store.add_to_watchlist(show(2))
    payload = client.get(f"{PREFIX}/sync/payload").json()["payload"]
    assert payload.startswith("AD1:")

    other = EntityStore()
    install(app, store=other, catalog=FakeCatalog(), engine=SyncEngine(other, FakeCatalog(), sleep=no_sleep))
    events = _sse_events(client.post(f"{PREFIX}/sync/payload", json={"payload": payload}).text)
    assert events[-1][0] == "complete"
    assert {i.key for i in other.watchlist} == {LibraryKey(MediaKind.TV, 1), LibraryKey(MediaKind.TV, 2)}


def test_corrupted_sync_payload_is_422(client: TestClient) -> None:
    assert client.post(f"{PREFIX}/sync/payload", json={"payload": "AD1:garbage"}).status_code == 422


def test_legacy_import(client: TestClient, store: EntityStore) -> None:
    r = client.post(f"{PREFIX}/sync/legacy", json={"old": {"shows": [media_dict(1), media_dict(3)]}})
    assert _sse_events(r.text)[-1][0] == "complete"
    assert [i.id for i in store.watchlist] == [1, 3]


def test_backup_download(client: TestClient, store: EntityStore) -> None:
    store.add_to_watchlist(show(1))
    r = client.get(f"{PREFIX}/backup")
    assert "attachment" in r.headers["content-disposition"]
    assert r.json()["watchlist"][0]["id"] == 1


def test_resync_and_status(client: TestClient, store: EntityStore) -> None:
    store.add_to_watchlist(show(1))
    events = _sse_events(client.post(f"{PREFIX}/sync/resync").text)
    assert events[0] == ("progress", {"current": 1, "total": 1})
    status = client.get(f"{PREFIX}/sync/status").json()
    assert status["running"] is False
    assert status["last_run"]["completed"] is True

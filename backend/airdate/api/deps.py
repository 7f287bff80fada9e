"""Shared service stack for the routers, built once at startup."""

import logging

from fastapi import FastAPI, Request

from airdate.clients.base import IStateStorage
from airdate.clients.supabase import SupabaseStorage
from airdate.clients.tmdb import TmdbClient
from airdate.config import Settings
from airdate.errors import ValidationError
from airdate.services import backup_codec
from airdate.services.entity_store import EntityStore
from airdate.services.reminders import ReminderResolver
from airdate.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


async def build_services(app: FastAPI, settings: Settings) -> None:
    """Create the store, catalog, storage and engines and hang them on app.state."""
    from airdate.database import async_session
    from airdate.services.state_storage import SqlStateStorage

    storage: IStateStorage
    if settings.has_cloud:
        storage = SupabaseStorage(settings.supabase_url, settings.supabase_anon_key, settings.supabase_table)
        storage_key = None      # cloud state is keyed by the signed-in user id
    else:
        storage = SqlStateStorage(async_session)
        storage_key = settings.profile_id

    if not settings.has_tmdb:
        logger.warning("TMDB_API_KEY is not set; catalog fetches will fail until one is configured")
    catalog = TmdbClient(
        settings.tmdb_api_key or "",
        language=settings.tmdb_language,
        timeout=settings.tmdb_timeout_seconds,
        max_concurrent=settings.tmdb_max_concurrent,
    )

    store = EntityStore()
    if storage_key:
        blob = await storage.load(storage_key)
        if blob:
            try:
                backup_codec.restore(backup_codec.decode(blob), store)
                logger.info(f"Restored {len(store.watchlist)} library items for '{storage_key}'")
            except ValidationError as e:
                logger.warning(f"Stored state for '{storage_key}' is unreadable, starting empty: {e}")
    if store.settings.timezone == "UTC" and settings.default_timezone != "UTC":
        store.update_settings({"timezone": settings.default_timezone})

    install(
        app,
        store=store,
        catalog=catalog,
        engine=SyncEngine(
            store,
            catalog,
            storage=storage,
            storage_key=storage_key,
            batch_size=settings.sync_batch_size,
            batch_delay=settings.sync_batch_delay,
            unit_timeout=settings.sync_unit_timeout_seconds,
            failure_budget=settings.sync_failure_budget,
        ),
    )


def install(app: FastAPI, store: EntityStore, catalog, engine: SyncEngine) -> None:
    app.state.store = store
    app.state.catalog = catalog
    app.state.sync_engine = engine
    app.state.resolver = ReminderResolver(store)


def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine


def get_resolver(request: Request) -> ReminderResolver:
    return request.app.state.resolver


async def save_state(request: Request) -> None:
    """Persist after a direct mutation. PersistenceError is mapped to 502 by the app."""
    await get_engine(request).persist()

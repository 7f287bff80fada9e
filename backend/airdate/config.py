"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """All configuration loaded from environment / .env file."""

    # ── Application ──────────────────────────────────────────────
    app_name: str = "Airdate"
    app_url: str = "http://localhost:30810"
    debug: bool = False
    log_level: str = "info"

    # ── Database ─────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./airdate.db"

    # ── TMDB ─────────────────────────────────────────────────────
    tmdb_api_key: Optional[str] = None
    tmdb_language: str = "en-US"
    tmdb_timeout_seconds: float = 15.0
    tmdb_max_concurrent: int = 4

    # ── Cloud backend (Supabase) ─────────────────────────────────
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_table: str = "profiles"

    # ── Sync pipeline ────────────────────────────────────────────
    sync_batch_size: int = 4
    sync_batch_delay_ms: int = 500       # keeps us under TMDB's request ceiling
    sync_unit_timeout_seconds: float = 20.0
    sync_failure_budget: Optional[int] = None  # None = every unit failure is non-fatal

    # ── Calendar ─────────────────────────────────────────────────
    default_timezone: str = "UTC"
    profile_id: str = "local"            # local storage key for this device

    # ── Server ───────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def has_tmdb(self) -> bool:
        return bool(self.tmdb_api_key)

    @property
    def has_cloud(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def sync_batch_delay(self) -> float:
        return self.sync_batch_delay_ms / 1000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

"""SQLAlchemy ORM models: local state persistence."""

from datetime import datetime
from typing import Optional
from sqlalchemy import Integer, String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from airdate.database import Base


# ── User State ───────────────────────────────────────────────────

class UserState(Base):
    """One encoded backup payload per local profile."""
    __tablename__ = "user_state"

    id: Mapped[int] = mapped_column(primary_key=True)
    profile_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    settings_version: Mapped[int] = mapped_column(Integer, default=0)
    watchlist_size: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

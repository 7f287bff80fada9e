"""Local state storage: encoded payloads in the application database."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from airdate.clients.base import IStateStorage
from airdate.models.tables import UserState

logger = logging.getLogger(__name__)


class SqlStateStorage(IStateStorage):
    """Keeps one row per local profile in the `user_state` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def authenticate(self, username: str, secret: Optional[str] = None) -> str:
        # Local profiles are not password protected; the name is the key
        return username

    async def persist(self, user_id: str, blob: dict) -> None:
        async with self.session_factory() as session:
            result = await session.execute(select(UserState).where(UserState.profile_id == user_id))
            row = result.scalar_one_or_none()
            if row is None:
                row = UserState(profile_id=user_id, payload=blob)
                session.add(row)
            else:
                row.payload = blob
            row.settings_version = (blob.get("settings") or {}).get("version", 0)
            row.watchlist_size = len(blob.get("watchlist") or [])
            await session.commit()
        logger.debug(f"Persisted state for profile '{user_id}' ({row.watchlist_size} items)")

    async def load(self, user_id: str) -> Optional[dict]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserState.payload).where(UserState.profile_id == user_id)
            )
            return result.scalar_one_or_none()

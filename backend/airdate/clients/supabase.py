"""Supabase client: cloud copy of the user's encoded state.

Talks to the GoTrue auth endpoint and the PostgREST table API directly.
The whole backup payload is stored as one JSON column per profile row.
"""

import httpx
import logging
from typing import Optional

from airdate.clients.base import IStateStorage

logger = logging.getLogger(__name__)


class SupabaseStorage(IStateStorage):
    """Stores backup blobs in a Supabase table keyed by user id."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        table: str = "profiles",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.table = table
        self.timeout = timeout
        self._transport = transport
        self._access_token: Optional[str] = None

    def _headers(self) -> dict:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self._access_token or self.anon_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def authenticate(self, username: str, secret: Optional[str] = None) -> str:
        """Password sign-in. `username` is the account email."""
        async with self._client() as client:
            resp = await client.post(
                f"{self.url}/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": username, "password": secret or ""},
                headers={"apikey": self.anon_key, "Content-Type": "application/json"},
            )
            resp.raise_for_status()
            data = resp.json()
        self._access_token = data["access_token"]
        user_id = data["user"]["id"]
        logger.info(f"Signed in to cloud storage as {user_id}")
        return user_id

    async def persist(self, user_id: str, blob: dict) -> None:
        async with self._client() as client:
            resp = await client.post(
                f"{self.url}/rest/v1/{self.table}",
                params={"on_conflict": "id"},
                json={"id": user_id, "backup": blob},
                headers={**self._headers(), "Prefer": "resolution=merge-duplicates"},
            )
            resp.raise_for_status()

    async def load(self, user_id: str) -> Optional[dict]:
        async with self._client() as client:
            resp = await client.get(
                f"{self.url}/rest/v1/{self.table}",
                params={"id": f"eq.{user_id}", "select": "backup"},
                headers=self._headers(),
            )
            resp.raise_for_status()
            rows = resp.json()
        if not rows:
            return None
        return rows[0].get("backup")

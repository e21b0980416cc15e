"""Supabase (PostgREST) profile store.

Profiles live in the `profiles` table: `id` (the auth user id),
`updated_at`, and `user_data` holding the whole learning document.
Row-level security limits every request to the caller's own row.
"""

from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from ..models.profile import LearningProfile
from .base import ProfileNotFoundError, ProfileStoreError

logger = structlog.get_logger()

PROFILES_TABLE = "profiles"


class SupabaseProfileStore:
    """Profile store backed by Supabase's REST interface.

    Args:
        base_url: Project URL, e.g. https://xyz.supabase.co.
        api_key: Project anon key.
        access_token: Signed-in user's JWT; falls back to the anon key.
        client: Optional preconfigured httpx client (tests inject a mock transport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=15)

    @property
    def _table_url(self) -> str:
        return f"{self.base_url}/rest/v1/{PROFILES_TABLE}"

    async def fetch(self, identity: str) -> LearningProfile:
        rows = await self._request(
            "GET",
            params={"id": f"eq.{identity}", "select": "user_data"},
        )
        if not rows or rows[0].get("user_data") is None:
            raise ProfileNotFoundError(identity)
        try:
            return LearningProfile.from_document(rows[0]["user_data"])
        except ValidationError as e:
            raise ProfileStoreError(f"Stored profile for {identity} is malformed") from e

    async def write(self, identity: str, profile: LearningProfile) -> None:
        rows = await self._request(
            "PATCH",
            params={"id": f"eq.{identity}"},
            json={"user_data": profile.to_document(), "updated_at": _now_iso()},
            prefer="return=representation",
        )
        if not rows:
            raise ProfileNotFoundError(identity)

    async def create(self, identity: str, profile: LearningProfile) -> None:
        await self._request(
            "POST",
            json={"id": identity, "user_data": profile.to_document(), "updated_at": _now_iso()},
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method, self._table_url, params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "supabase_request_failed",
                method=method,
                status_code=e.response.status_code,
            )
            raise ProfileStoreError(f"Profile store returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("supabase_transport_error", method=method, error=str(e))
            raise ProfileStoreError("Profile store is unreachable") from e
        if not response.content:
            return []
        return response.json()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

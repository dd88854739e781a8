"""Bearer credential validation against the Supabase auth API."""

from __future__ import annotations

import logging

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class AuthClient:
    """Resolve user ids from access tokens issued by the auth backend."""

    _USER_PATH = "/auth/v1/user"

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self, access_token: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (bolt-progress)",
        }
        if self._settings.auth_api_key:
            headers["apikey"] = self._settings.auth_api_key
        return headers

    async def get_user_id(self, access_token: str) -> str | None:
        """Return the user id owning ``access_token`` or ``None``."""

        if not self._settings.auth_enabled:
            logger.info("Auth backend not configured, ignoring bearer token")
            return None

        try:
            response = await self._client.get(
                self._USER_PATH, headers=self._headers(access_token)
            )
        except httpx.HTTPError as exc:
            logger.warning("Auth backend unreachable: %s", exc)
            return None

        if response.status_code in {401, 403}:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Auth backend rejected user lookup (%s): %s",
                response.status_code,
                response.text,
            )
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON auth backend response")
            return None
        if not isinstance(data, dict):
            return None
        user_id = data.get("id")
        if isinstance(user_id, str) and user_id.strip():
            return user_id.strip()
        return None

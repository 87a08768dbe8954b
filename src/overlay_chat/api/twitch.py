"""Twitch Helix API client."""

import logging
from typing import Any, Optional

from ..core.settings import TwitchSettings
from .base import ApiError, BaseApiClient

logger = logging.getLogger(__name__)


class TwitchHelixClient(BaseApiClient):
    """Client for the Twitch Helix API.

    Every Helix call carries the bearer token + Client-Id header pair.
    """

    BASE_URL = "https://api.twitch.tv/helix"
    AUTH_URL = "https://id.twitch.tv/oauth2"
    IVR_URL = "https://api.ivr.fi/v2/twitch"

    def __init__(self, settings: TwitchSettings) -> None:
        super().__init__()
        self.settings = settings

    @property
    def name(self) -> str:
        return "Twitch"

    @property
    def has_credentials(self) -> bool:
        return bool(self.settings.client_id and self.settings.access_token)

    def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        return {
            "Client-Id": self.settings.client_id,
            "Authorization": f"Bearer {self.settings.access_token}",
        }

    async def _helix_get(self, path: str, params: dict[str, str] | None = None) -> dict:
        data = await self._request_json(
            "GET", f"{self.BASE_URL}/{path}", headers=self._get_headers(), params=params
        )
        if not isinstance(data, dict):
            raise ApiError(f"Twitch: unexpected response shape for {path}")
        return data

    async def _first(self, path: str, params: dict[str, str]) -> Optional[dict[str, Any]]:
        items = (await self._helix_get(path, params)).get("data") or []
        return items[0] if items else None

    async def get_user_id(self, login: str) -> Optional[str]:
        """Get a user's numeric id by login name."""
        user = await self._first("users", {"login": login.lower()})
        if user is None:
            return None
        return user.get("id") or None

    async def get_user_id_public(self, login: str) -> Optional[str]:
        """Resolve a login through the public IVR API (no auth required)."""
        data = await self._request_json(
            "GET", f"{self.IVR_URL}/user", params={"login": login.lower()}
        )
        if isinstance(data, list) and data:
            return data[0].get("id") or None
        return None

    async def get_channel_info(self, broadcaster_id: str) -> Optional[dict[str, Any]]:
        """Get title/category for a broadcaster."""
        return await self._first("channels", {"broadcaster_id": broadcaster_id})

    async def get_game(self, game_id: str) -> Optional[dict[str, Any]]:
        """Get a game/category by id."""
        return await self._first("games", {"id": game_id})

    async def get_global_badges(self) -> dict:
        return await self._helix_get("chat/badges/global")

    async def get_channel_badges(self, broadcaster_id: str) -> dict:
        return await self._helix_get("chat/badges", {"broadcaster_id": broadcaster_id})

    async def validate_token(self) -> Optional[dict[str, Any]]:
        """Validate the bearer token; returns login/user_id/scopes or None."""
        if not self.settings.access_token:
            return None
        try:
            data = await self._request_json(
                "GET",
                f"{self.AUTH_URL}/validate",
                headers={"Authorization": f"OAuth {self.settings.access_token}"},
            )
        except ApiError as e:
            logger.warning(f"Twitch token validation failed: {e}")
            return None
        return data if isinstance(data, dict) else None

    async def get_eventsub_subscriptions(self) -> list[dict[str, Any]]:
        """List EventSub subscriptions owned by this client id (all pages)."""
        subscriptions: list[dict[str, Any]] = []
        cursor: str | None = ""
        while cursor is not None:
            params: dict[str, str] = {}
            if cursor:
                params["after"] = cursor
            data = await self._helix_get("eventsub/subscriptions", params)
            subscriptions.extend(data.get("data") or [])
            cursor = (data.get("pagination") or {}).get("cursor") or None
        return subscriptions

    async def create_eventsub_subscription(
        self,
        sub_type: str,
        version: str,
        condition: dict[str, str],
        session_id: str,
    ) -> dict[str, Any]:
        """Create a WebSocket-transport EventSub subscription."""
        body = {
            "type": sub_type,
            "version": version,
            "condition": condition,
            "transport": {"method": "websocket", "session_id": session_id},
        }
        data = await self._request_json(
            "POST",
            f"{self.BASE_URL}/eventsub/subscriptions",
            expected=(200, 202),
            headers=self._get_headers(),
            json=body,
        )
        return data if isinstance(data, dict) else {}

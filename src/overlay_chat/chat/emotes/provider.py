"""Emote providers for Twitch, 7TV and BetterTTV.

Every fetch returns a name -> EmoteRef map on success and None on failure,
so callers can keep the previous namespace when an upstream is down.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import aiohttp

from ..models import EmoteRef

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=15)


class BaseEmoteProvider(ABC):
    """Base class for emote providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""

    @abstractmethod
    async def get_global_emotes(self) -> dict[str, EmoteRef] | None:
        """Fetch global emotes for this provider."""

    async def get_channel_emotes(self, channel_id: str) -> dict[str, EmoteRef] | None:
        """Fetch channel-specific emotes for a numeric Twitch user id."""
        return {}

    async def _get_json(self, url: str, headers: dict | None = None):
        """GET a JSON document, returning None on any failure."""
        try:
            async with aiohttp.ClientSession(headers=headers) as session:
                async with session.get(url, timeout=REQUEST_TIMEOUT) as resp:
                    if resp.status != 200:
                        logger.warning(f"{self.name}: {url} returned {resp.status}")
                        return None
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"{self.name}: request to {url} failed: {e}")
            return None


class TwitchProvider(BaseEmoteProvider):
    """Native Twitch global emotes via Helix."""

    BASE_URL = "https://api.twitch.tv/helix"

    def __init__(self, oauth_token: str = "", client_id: str = ""):
        self.oauth_token = oauth_token
        self.client_id = client_id

    @property
    def name(self) -> str:
        return "twitch"

    def _get_headers(self) -> dict:
        headers = {"Client-Id": self.client_id}
        if self.oauth_token:
            headers["Authorization"] = f"Bearer {self.oauth_token}"
        return headers

    async def get_global_emotes(self) -> dict[str, EmoteRef] | None:
        data = await self._get_json(f"{self.BASE_URL}/chat/emotes/global", self._get_headers())
        if not isinstance(data, dict):
            return None
        return self.parse_emotes(data)

    @classmethod
    def parse_emotes(cls, data: dict) -> dict[str, EmoteRef]:
        emotes: dict[str, EmoteRef] = {}
        for emote_data in data.get("data", []):
            parsed = cls._parse_emote(emote_data)
            if parsed:
                emotes[parsed[0]] = parsed[1]
        return emotes

    @staticmethod
    def _parse_emote(data: dict) -> tuple[str, EmoteRef] | None:
        """Parse a Twitch emote from Helix API data."""
        name = data.get("name", "")
        url = data.get("images", {}).get("url_1x", "")
        if not name or not url:
            return None

        # Helix only hands out static URLs; animated emotes live under /animated/
        animated = "animated" in (data.get("format") or [])
        if animated:
            url = url.replace("/static/", "/animated/")
        return name, EmoteRef(url=url, animated=animated)


class SevenTVProvider(BaseEmoteProvider):
    """7TV emote provider."""

    BASE_URL = "https://7tv.io/v3"

    @property
    def name(self) -> str:
        return "7tv"

    async def get_global_emotes(self) -> dict[str, EmoteRef] | None:
        data = await self._get_json(f"{self.BASE_URL}/emote-sets/global")
        if not isinstance(data, dict):
            return None
        # The global namespace is rendered static
        return self.parse_emote_list(data.get("emotes") or [], keep_animation=False)

    async def get_channel_emotes(self, channel_id: str) -> dict[str, EmoteRef] | None:
        data = await self._get_json(f"{self.BASE_URL}/users/twitch/{channel_id}")
        if not isinstance(data, dict):
            return None
        emote_set = data.get("emote_set") or {}
        return self.parse_emote_list(emote_set.get("emotes") or [], keep_animation=True)

    @classmethod
    def parse_emote_list(cls, emotes: list, keep_animation: bool) -> dict[str, EmoteRef]:
        result: dict[str, EmoteRef] = {}
        for emote_data in emotes:
            parsed = cls._parse_emote(emote_data)
            if not parsed:
                continue
            name, ref = parsed
            if not keep_animation:
                ref = EmoteRef(url=ref.url, animated=False)
            result[name] = ref
        return result

    @staticmethod
    def _parse_emote(data: dict) -> tuple[str, EmoteRef] | None:
        """Parse a 7TV emote from API data."""
        emote_data = data.get("data") or data
        name = data.get("name") or emote_data.get("name", "")
        host = emote_data.get("host") or {}
        base_url = host.get("url", "")
        if not name or not base_url:
            return None
        if base_url.startswith("//"):
            base_url = "https:" + base_url

        files = host.get("files") or []
        webp = [f for f in files if str(f.get("format", "")).upper() == "WEBP"]
        chosen = next((f for f in webp if f.get("name", "").startswith("1x")), None)
        if chosen is None:
            chosen = webp[0] if webp else (files[0] if files else None)
        file_name = chosen.get("name") if chosen else "1x.webp"

        return name, EmoteRef(
            url=f"{base_url}/{file_name}",
            animated=bool(emote_data.get("animated", False)),
        )


class BTTVProvider(BaseEmoteProvider):
    """BetterTTV emote provider."""

    BASE_URL = "https://api.betterttv.net/3"
    CDN_URL = "https://cdn.betterttv.net/emote"

    @property
    def name(self) -> str:
        return "bttv"

    async def get_global_emotes(self) -> dict[str, EmoteRef] | None:
        data = await self._get_json(f"{self.BASE_URL}/cached/emotes/global")
        if not isinstance(data, list):
            return None
        return self.parse_emote_list(data)

    async def get_channel_emotes(self, channel_id: str) -> dict[str, EmoteRef] | None:
        data = await self._get_json(f"{self.BASE_URL}/cached/users/twitch/{channel_id}")
        if not isinstance(data, dict):
            return None
        return self.parse_emote_list(
            (data.get("channelEmotes") or []) + (data.get("sharedEmotes") or [])
        )

    @classmethod
    def parse_emote_list(cls, emotes: list) -> dict[str, EmoteRef]:
        result: dict[str, EmoteRef] = {}
        for emote_data in emotes:
            emote_id = emote_data.get("id", "")
            code = emote_data.get("code", "")
            if emote_id and code:
                result[code] = EmoteRef(url=f"{cls.CDN_URL}/{emote_id}/1x")
        return result

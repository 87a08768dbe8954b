"""Stream metadata, badge and emote catalog fetching."""

import asyncio
import logging
from collections.abc import AsyncIterator

import aiohttp

from ..chat.badges import BadgeCatalog, parse_badge_sets
from ..chat.emotes.provider import BTTVProvider, SevenTVProvider, TwitchProvider
from ..chat.emotes.resolver import (
    BTTV_CHANNEL,
    BTTV_GLOBAL,
    SEVENTV_CHANNEL,
    SEVENTV_GLOBAL,
    TWITCH_GLOBAL,
)
from ..chat.models import EmoteRef, StreamMetadata
from ..core.settings import ChatSettings, TwitchSettings
from .base import ApiError
from .identity import ChannelIdentityService, ChannelLookupError
from .twitch import TwitchHelixClient

logger = logging.getLogger(__name__)

# (type, version) pairs the overlay listens to over EventSub
REDEMPTION_SUBSCRIPTION = "channel.channel_points_custom_reward_redemption.add"
CHAT_MESSAGE_SUBSCRIPTION = "channel.chat.message"
EVENTSUB_SUBSCRIPTIONS: tuple[tuple[str, str], ...] = (
    (REDEMPTION_SUBSCRIPTION, "1"),
    (CHAT_MESSAGE_SUBSCRIPTION, "1"),
)

# Errors a single upstream fetch may end with
FETCH_ERRORS = (ApiError, ChannelLookupError, aiohttp.ClientError, asyncio.TimeoutError)


def box_art_url(template: str, width: int, height: int) -> str | None:
    """Fill a Helix `box_art_url` template."""
    if not template:
        return None
    return template.replace("{width}", str(width)).replace("{height}", str(height))


class MetadataFetcher:
    """Wraps every HTTP integration the chat client relies on."""

    def __init__(
        self,
        twitch: TwitchSettings,
        chat: ChatSettings | None = None,
        helix: TwitchHelixClient | None = None,
        identity: ChannelIdentityService | None = None,
    ):
        self.twitch = twitch
        self.chat = chat or ChatSettings()
        self.helix = helix or TwitchHelixClient(twitch)
        self.identity = identity or ChannelIdentityService(self.helix)
        self._token_user_id: str | None = None

    async def resolve_channel_id(self, login: str | None = None) -> str:
        """Resolve (and cache) the numeric id of a channel login."""
        return await self.identity.resolve(login or self.twitch.channel)

    async def refresh_stream_info(self) -> StreamMetadata:
        """Fetch title, category and category artwork for the channel.

        Raises on failure; the caller keeps its previous metadata.
        """
        channel_id = await self.resolve_channel_id()
        channel = await self.helix.get_channel_info(channel_id)
        if channel is None:
            raise ApiError(f"Twitch: no channel info for broadcaster {channel_id}")

        title = channel.get("title", "")
        category = channel.get("game_name", "")
        image_url = None
        game_id = channel.get("game_id", "")
        if game_id:
            game = await self.helix.get_game(game_id)
            image_url = box_art_url(
                (game or {}).get("box_art_url", ""),
                self.chat.category_art_width,
                self.chat.category_art_height,
            )

        return StreamMetadata(title=title, category_name=category, category_image_url=image_url)

    async def load_badges(self, channel_login: str) -> BadgeCatalog | None:
        """Fetch global + channel badges and merge them (channel wins).

        Returns None when both fetches failed.
        """
        global_sets: dict | None = None
        channel_sets: dict | None = None

        try:
            global_sets = parse_badge_sets(await self.helix.get_global_badges())
        except FETCH_ERRORS as e:
            logger.warning(f"Failed to load global badges: {e}")

        try:
            channel_id = await self.resolve_channel_id(channel_login)
            channel_sets = parse_badge_sets(await self.helix.get_channel_badges(channel_id))
        except FETCH_ERRORS as e:
            logger.warning(f"Failed to load channel badges for {channel_login}: {e}")

        if global_sets is None and channel_sets is None:
            return None

        catalog = BadgeCatalog(global_sets or {}).merged(BadgeCatalog(channel_sets or {}))
        logger.info(f"Loaded {len(catalog)} badge sets for {channel_login}")
        return catalog

    async def iter_emote_namespaces(
        self, channel_login: str
    ) -> AsyncIterator[tuple[str, dict[str, EmoteRef]]]:
        """Load emote namespaces one provider at a time.

        Yields (namespace, emotes) for every provider that succeeded; a failing
        provider is logged and skipped without affecting the others.
        """
        seventv = SevenTVProvider()
        bttv = BTTVProvider()
        twitch = TwitchProvider(
            oauth_token=self.twitch.access_token, client_id=self.twitch.client_id
        )

        async def channel_id() -> str | None:
            try:
                return await self.resolve_channel_id(channel_login)
            except FETCH_ERRORS as e:
                logger.warning(f"Cannot load channel emotes for {channel_login}: {e}")
                return None

        steps = (
            (SEVENTV_GLOBAL, seventv.get_global_emotes, False),
            (SEVENTV_CHANNEL, seventv.get_channel_emotes, True),
            (BTTV_GLOBAL, bttv.get_global_emotes, False),
            (BTTV_CHANNEL, bttv.get_channel_emotes, True),
            (TWITCH_GLOBAL, twitch.get_global_emotes, False),
        )
        for namespace, fetch, needs_channel in steps:
            try:
                if needs_channel:
                    user_id = await channel_id()
                    if user_id is None:
                        continue
                    emotes = await fetch(user_id)
                else:
                    emotes = await fetch()
            except Exception as e:
                logger.warning(f"Emote namespace {namespace} failed: {e}")
                continue
            if emotes is None:
                logger.warning(f"Emote namespace {namespace} unavailable, keeping previous")
                continue
            logger.debug(f"Fetched {len(emotes)} emotes for {namespace}")
            yield namespace, emotes

    async def token_user_id(self) -> str | None:
        """User id of the token owner (configured, or resolved once)."""
        if self.twitch.user_id:
            return self.twitch.user_id
        if self._token_user_id is None:
            data = await self.helix.validate_token()
            if data:
                self._token_user_id = data.get("user_id") or None
        return self._token_user_id

    async def ensure_eventsub_subscriptions(self, session_id: str) -> list[str]:
        """Subscribe the session to every wanted type not already enabled.

        Returns the subscription types created by this call.
        """
        broadcaster_id = await self.resolve_channel_id()
        user_id = await self.token_user_id() or broadcaster_id

        existing = await self.helix.get_eventsub_subscriptions()
        active = {
            sub.get("type")
            for sub in existing
            if sub.get("status") == "enabled"
            and (sub.get("transport") or {}).get("session_id") == session_id
        }

        created: list[str] = []
        for sub_type, version in EVENTSUB_SUBSCRIPTIONS:
            if sub_type in active:
                logger.debug(f"EventSub {sub_type} already active for this session")
                continue
            condition = {"broadcaster_user_id": broadcaster_id}
            if sub_type == CHAT_MESSAGE_SUBSCRIPTION:
                condition["user_id"] = user_id
            try:
                await self.helix.create_eventsub_subscription(
                    sub_type, version, condition, session_id
                )
            except FETCH_ERRORS as e:
                logger.warning(f"EventSub subscribe to {sub_type} failed: {e}")
                continue
            logger.info(f"EventSub subscribed to {sub_type}")
            created.append(sub_type)
        return created

    async def close(self) -> None:
        await self.helix.close()

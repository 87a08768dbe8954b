"""Tests for MetadataFetcher with a fake Helix client."""

import pytest

from overlay_chat.api.base import ApiError
from overlay_chat.api.metadata import (
    CHAT_MESSAGE_SUBSCRIPTION,
    REDEMPTION_SUBSCRIPTION,
    MetadataFetcher,
    box_art_url,
)
from overlay_chat.chat.emotes.provider import BTTVProvider, SevenTVProvider, TwitchProvider
from overlay_chat.chat.emotes.resolver import (
    BTTV_CHANNEL,
    BTTV_GLOBAL,
    SEVENTV_CHANNEL,
    SEVENTV_GLOBAL,
    TWITCH_GLOBAL,
)
from overlay_chat.chat.models import EmoteRef, StreamMetadata
from overlay_chat.core.settings import TwitchSettings


class FakeHelix:
    """Stands in for TwitchHelixClient; records calls."""

    has_credentials = True

    def __init__(self):
        self.channel = {"title": "Any% run", "game_id": "509658", "game_name": "Just Chatting"}
        self.game = {"box_art_url": "https://art/509658-{width}x{height}.jpg"}
        self.global_badges = {
            "data": [{"set_id": "subscriber", "versions": [{"id": "0", "image_url_1x": "g0"}]}]
        }
        self.channel_badges = {
            "data": [{"set_id": "subscriber", "versions": [{"id": "0", "image_url_1x": "c0"}]}]
        }
        self.subscriptions = []
        self.created = []

    async def get_user_id(self, login):
        return "1001"

    async def get_channel_info(self, broadcaster_id):
        return self.channel

    async def get_game(self, game_id):
        return self.game

    async def get_global_badges(self):
        if isinstance(self.global_badges, Exception):
            raise self.global_badges
        return self.global_badges

    async def get_channel_badges(self, broadcaster_id):
        if isinstance(self.channel_badges, Exception):
            raise self.channel_badges
        return self.channel_badges

    async def validate_token(self):
        return {"user_id": "2002", "login": "bot"}

    async def get_eventsub_subscriptions(self):
        return self.subscriptions

    async def create_eventsub_subscription(self, sub_type, version, condition, session_id):
        self.created.append((sub_type, condition, session_id))
        return {}

    async def close(self):
        pass


@pytest.fixture
def helix():
    return FakeHelix()


@pytest.fixture
def fetcher(helix):
    return MetadataFetcher(TwitchSettings(channel="streamer"), helix=helix)


# --- Stream info ---


def test_box_art_url():
    assert box_art_url("https://x/{width}x{height}.jpg", 300, 450) == "https://x/300x450.jpg"
    assert box_art_url("", 300, 450) is None


@pytest.mark.asyncio
async def test_refresh_stream_info(fetcher):
    metadata = await fetcher.refresh_stream_info()
    assert metadata == StreamMetadata(
        title="Any% run",
        category_name="Just Chatting",
        category_image_url="https://art/509658-300x450.jpg",
    )


@pytest.mark.asyncio
async def test_refresh_stream_info_without_category(fetcher, helix):
    helix.channel = {"title": "Offline chat", "game_id": "", "game_name": ""}
    metadata = await fetcher.refresh_stream_info()
    assert metadata.category_image_url is None
    assert metadata.title == "Offline chat"


@pytest.mark.asyncio
async def test_refresh_stream_info_missing_channel_raises(fetcher, helix):
    helix.channel = None
    with pytest.raises(ApiError):
        await fetcher.refresh_stream_info()


# --- Badges ---


@pytest.mark.asyncio
async def test_load_badges_channel_overrides_global(fetcher):
    catalog = await fetcher.load_badges("streamer")
    assert catalog.url_for("subscriber", "0") == "c0"


@pytest.mark.asyncio
async def test_load_badges_one_side_failing(fetcher, helix):
    helix.channel_badges = ApiError("boom", 500)
    catalog = await fetcher.load_badges("streamer")
    assert catalog.url_for("subscriber", "0") == "g0"


@pytest.mark.asyncio
async def test_load_badges_both_failing_returns_none(fetcher, helix):
    helix.global_badges = ApiError("boom", 500)
    helix.channel_badges = ApiError("boom", 500)
    assert await fetcher.load_badges("streamer") is None


# --- Emotes ---


@pytest.mark.asyncio
async def test_emote_namespaces_in_order_and_fault_tolerant(fetcher, monkeypatch):
    async def seventv_global(self):
        return {"EZ": EmoteRef("7tv-ez")}

    async def seventv_channel(self, channel_id):
        assert channel_id == "1001"
        return {"catJAM": EmoteRef("7tv-catjam", animated=True)}

    async def bttv_global(self):
        return None

    async def bttv_channel(self, channel_id):
        raise RuntimeError("unexpected payload")

    async def twitch_global(self):
        return {"Kappa": EmoteRef("twitch-kappa")}

    monkeypatch.setattr(SevenTVProvider, "get_global_emotes", seventv_global)
    monkeypatch.setattr(SevenTVProvider, "get_channel_emotes", seventv_channel)
    monkeypatch.setattr(BTTVProvider, "get_global_emotes", bttv_global)
    monkeypatch.setattr(BTTVProvider, "get_channel_emotes", bttv_channel)
    monkeypatch.setattr(TwitchProvider, "get_global_emotes", twitch_global)

    results = [item async for item in fetcher.iter_emote_namespaces("streamer")]

    assert [namespace for namespace, _ in results] == [
        SEVENTV_GLOBAL,
        SEVENTV_CHANNEL,
        TWITCH_GLOBAL,
    ]
    assert BTTV_GLOBAL not in dict(results)
    assert BTTV_CHANNEL not in dict(results)
    assert dict(results)[TWITCH_GLOBAL] == {"Kappa": EmoteRef("twitch-kappa")}


# --- EventSub subscriptions ---


@pytest.mark.asyncio
async def test_ensure_subscriptions_creates_missing(fetcher, helix):
    created = await fetcher.ensure_eventsub_subscriptions("session-1")
    assert created == [REDEMPTION_SUBSCRIPTION, CHAT_MESSAGE_SUBSCRIPTION]
    conditions = {sub_type: condition for sub_type, condition, _ in helix.created}
    assert conditions[REDEMPTION_SUBSCRIPTION] == {"broadcaster_user_id": "1001"}
    assert conditions[CHAT_MESSAGE_SUBSCRIPTION] == {
        "broadcaster_user_id": "1001",
        "user_id": "2002",
    }


@pytest.mark.asyncio
async def test_ensure_subscriptions_skips_active_for_session(fetcher, helix):
    helix.subscriptions = [
        {
            "type": REDEMPTION_SUBSCRIPTION,
            "status": "enabled",
            "transport": {"method": "websocket", "session_id": "session-1"},
        },
        {
            "type": CHAT_MESSAGE_SUBSCRIPTION,
            "status": "enabled",
            "transport": {"method": "websocket", "session_id": "old-session"},
        },
    ]
    created = await fetcher.ensure_eventsub_subscriptions("session-1")
    assert created == [CHAT_MESSAGE_SUBSCRIPTION]


@pytest.mark.asyncio
async def test_configured_user_id_skips_validation(helix):
    fetcher = MetadataFetcher(TwitchSettings(channel="streamer", user_id="777"), helix=helix)
    assert await fetcher.token_user_id() == "777"

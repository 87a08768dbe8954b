"""Shared test fixtures for overlay_chat tests."""

from datetime import datetime, timezone

import pytest
from PySide6.QtCore import QCoreApplication

from overlay_chat.chat.badges import BadgeCatalog
from overlay_chat.chat.emotes.resolver import (
    BTTV_GLOBAL,
    SEVENTV_CHANNEL,
    SEVENTV_GLOBAL,
    TWITCH_GLOBAL,
    EmoteResolver,
)
from overlay_chat.chat.models import ChatMessage, EmoteRef, NotificationEvent, Rgb
from overlay_chat.core.settings import ChatSettings, Settings, TwitchSettings


@pytest.fixture(scope="session")
def qapp():
    """A QCoreApplication so QTimer and queued signals work."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def chat_settings():
    return ChatSettings()


@pytest.fixture
def settings():
    return Settings(
        twitch=TwitchSettings(channel="teststreamer"),
        chat=ChatSettings(eventsub_enabled=False),
    )


@pytest.fixture
def chat_message():
    return ChatMessage(
        id="msg-001",
        sender="TestUser",
        text="Hello world!",
        badges=(("subscriber", "12"),),
        color=Rgb(255, 0, 0),
        timestamp=datetime(2025, 1, 1, 12, 30, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def notification():
    return NotificationEvent(
        id="redemption-001",
        sender="Viewer",
        text="Redeemed Hydrate",
        kind="channel.channel_points_custom_reward_redemption.add",
    )


@pytest.fixture
def badge_catalog():
    return BadgeCatalog(
        {
            "subscriber": {"0": "https://example.com/sub0", "12": "https://example.com/sub12"},
            "moderator": {"1": "https://example.com/mod1"},
        }
    )


@pytest.fixture
def emote_resolver():
    resolver = EmoteResolver()
    resolver.set_namespace(TWITCH_GLOBAL, {"Kappa": EmoteRef("https://twitch/kappa")})
    resolver.set_namespace(
        SEVENTV_CHANNEL, {"catJAM": EmoteRef("https://7tv/catjam", animated=True)}
    )
    resolver.set_namespace(
        SEVENTV_GLOBAL,
        {"Kappa": EmoteRef("https://7tv/kappa"), "EZ": EmoteRef("https://7tv/ez")},
    )
    resolver.set_namespace(BTTV_GLOBAL, {"OMEGALUL": EmoteRef("https://bttv/omegalul")})
    return resolver


@pytest.fixture
def make_message():
    def _make(message_id: str, text: str = "hi", sender: str = "viewer") -> ChatMessage:
        return ChatMessage(id=message_id, sender=sender, text=text)

    return _make

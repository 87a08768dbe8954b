"""Tests for ChatIngestionClient with fake transports (no network)."""

import asyncio
import concurrent.futures
import logging
from types import SimpleNamespace

import pytest
from PySide6.QtTest import QTest

from overlay_chat.api.metadata import REDEMPTION_SUBSCRIPTION
from overlay_chat.chat import manager
from overlay_chat.chat.badges import BadgeCatalog
from overlay_chat.chat.connections.base import BaseChatConnection
from overlay_chat.chat.emotes.resolver import BTTV_GLOBAL
from overlay_chat.chat.manager import ChatIngestionClient
from overlay_chat.chat.models import (
    SYSTEM_COLOR,
    SYSTEM_SENDER,
    ChatMessage,
    EmoteRef,
    NotificationEvent,
    StreamMetadata,
)
from overlay_chat.core.settings import ChatSettings, Settings, TwitchSettings


class FakeIrcConnection(BaseChatConnection):
    """Never touches the network; idles until cancelled."""

    def __init__(self, settings, generation=0, parent=None):
        super().__init__(generation, parent)
        self.channel = settings.channel

    async def run(self):
        await asyncio.sleep(3600)


class FakeFetcher:
    def __init__(self):
        self.helix = SimpleNamespace(has_credentials=False)
        self.refreshes = 0

    async def refresh_stream_info(self):
        self.refreshes += 1
        return StreamMetadata("Marathon", "Celeste", "https://art/300x450.jpg")

    async def load_badges(self, channel_login):
        return BadgeCatalog({"subscriber": {"12": "https://badges/sub12"}})

    async def iter_emote_namespaces(self, channel_login):
        yield BTTV_GLOBAL, {"catJAM": EmoteRef("https://bttv/catjam")}

    async def close(self):
        pass


def _make_client(settings):
    return ChatIngestionClient(settings, fetcher=FakeFetcher(), auto_connect=False)


@pytest.fixture
def client(qapp, settings, monkeypatch):
    monkeypatch.setattr(manager, "TwitchIrcConnection", FakeIrcConnection)
    client = _make_client(settings)
    yield client
    client.shutdown()


def _msg(message_id, badges=()):
    return ChatMessage(id=message_id, sender="viewer", text=f"text {message_id}", badges=badges)


# --- Lifecycle ---


def test_not_connected_until_started(client):
    assert not client.is_active
    assert client.generation == 0


def test_start_bumps_generation(client):
    client.start()
    first = client.generation
    client.start()
    assert client.is_active
    assert client.generation == first + 1


def test_messages_from_current_generation_accepted(client):
    client.start()
    client._on_irc_messages(client.generation, [_msg("a")])

    assert [m.id for m in client.state.messages] == ["a"]
    assert client.state.last_message.id == "a"


def test_stale_generation_ignored(client):
    client.start()
    old = client.generation
    client.start()

    client._on_irc_messages(old, [_msg("late")])
    client._on_irc_error(old, "old connection died")

    assert client.state.messages == []
    assert not client.is_reconnect_pending


def test_stop_keeps_history_and_ignores_late_output(client):
    client.start()
    generation = client.generation
    client._on_irc_messages(generation, [_msg("a")])

    client.stop()
    client.stop()
    client._on_irc_messages(generation, [_msg("b")])

    assert not client.is_active
    assert [m.id for m in client.state.messages] == ["a"]


# --- Failures ---


def test_connection_failure_posts_system_message_and_schedules_reconnect(client):
    errors = []
    client.error_occurred.connect(errors.append)
    client.start()

    client._on_irc_error(client.generation, "Connection failed: timed out")

    last = client.state.messages[-1]
    assert last.sender == SYSTEM_SENDER
    assert last.is_system
    assert last.display_color == SYSTEM_COLOR
    assert "timed out" in last.text
    assert errors == ["Connection failed: timed out"]
    assert client.is_reconnect_pending

    client.stop()
    assert not client.is_reconnect_pending


def test_reconnect_restarts_after_delay(qapp, monkeypatch):
    monkeypatch.setattr(manager, "TwitchIrcConnection", FakeIrcConnection)
    settings = Settings(
        twitch=TwitchSettings(channel="teststreamer"),
        chat=ChatSettings(reconnect_delay=0.2, eventsub_enabled=False),
    )
    client = _make_client(settings)
    try:
        client.start()
        generation = client.generation
        client._on_irc_error(generation, "boom")

        QTest.qWait(100)
        assert client.generation == generation
        QTest.qWait(300)
        assert client.generation == generation + 1
        assert client.is_active
    finally:
        client.shutdown()


# --- Merging ---


def test_badges_resolved_on_accept(client):
    client.state.set_badge_catalog(BadgeCatalog({"subscriber": {"12": "https://badges/sub12"}}))
    client.start()
    client._on_irc_messages(client.generation, [_msg("a", badges=(("subscriber", "12"),))])

    views = client.state.messages[0].badge_views
    assert [(v.set_id, v.version, v.url) for v in views] == [
        ("subscriber", "12", "https://badges/sub12")
    ]


def test_irc_and_eventsub_copies_collapse(client):
    client.start()
    client._on_irc_messages(client.generation, [_msg("shared-id")])
    client._on_eventsub_messages(0, [_msg("shared-id")])
    assert len(client.state.messages) == 1


def test_redemption_adds_notification_and_history_entry(client):
    client.start()
    event = NotificationEvent(
        id="r-1", sender="Viewer", text="Redeemed Hydrate", kind=REDEMPTION_SUBSCRIPTION
    )
    client._on_notification(0, event)

    assert [n.id for n in client.state.notifications] == ["r-1"]
    assert client.state.messages[-1].text == "Redeemed Hydrate"
    # Notifications do not take over the last-message slot
    assert client.state.last_message is None


def test_history_message_not_throttled(client):
    client.start()
    for i in range(5):
        client._on_irc_messages(client.generation, [_msg(f"m{i}")])

    assert len(client.state.messages) == 5
    assert client.state.last_message.id == "m0"


# --- Background work ---


def test_metadata_loop_updates_state(client):
    client.start()
    QTest.qWait(500)
    assert client.state.stream_title == "Marathon"
    assert client.state.category_name == "Celeste"
    assert client.state.category_image_url == "https://art/300x450.jpg"


def test_refresh_catalogs_publishes_results(client):
    client.refresh_catalogs()
    QTest.qWait(500)
    assert client.state.badge_catalog.url_for("subscriber", "12") == "https://badges/sub12"
    assert client.state.emotes.resolve("catJAM") == EmoteRef("https://bttv/catjam")


@pytest.mark.asyncio
async def test_load_all_badges_keeps_previous_on_failure(client, monkeypatch):
    await client.load_all_badges()
    catalog = client.state.badge_catalog
    assert len(catalog) == 1

    async def failing(channel_login):
        return None

    monkeypatch.setattr(client.fetcher, "load_badges", failing)
    await client.load_all_badges()
    assert client.state.badge_catalog is catalog


# --- Task failures ---


def test_crashed_network_task_is_logged(caplog):
    future = concurrent.futures.Future()
    future.set_exception(AttributeError("'str' object has no attribute 'get'"))

    with caplog.at_level(logging.ERROR, logger=manager.__name__):
        manager.log_task_failure("EventSub", future)

    assert "EventSub task stopped" in caplog.text
    assert "AttributeError" in caplog.text


def test_cancelled_or_finished_task_not_logged(caplog):
    cancelled = concurrent.futures.Future()
    cancelled.cancel()
    finished = concurrent.futures.Future()
    finished.set_result(None)

    with caplog.at_level(logging.ERROR, logger=manager.__name__):
        manager.log_task_failure("Twitch IRC", cancelled)
        manager.log_task_failure("Twitch IRC", finished)

    assert caplog.text == ""

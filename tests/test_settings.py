"""Tests for settings persistence and environment overrides."""

import json

import pytest

from overlay_chat.core import credential_store
from overlay_chat.core.settings import (
    ENV_BEARER_TOKEN,
    ENV_CHANNEL,
    ChatSettings,
    Settings,
    TwitchSettings,
)


@pytest.fixture(autouse=True)
def no_keyring(monkeypatch):
    monkeypatch.setattr(credential_store, "_keyring_available", False)


def test_defaults():
    settings = Settings()
    assert settings.chat == ChatSettings()
    assert settings.chat.history_limit == 20
    assert settings.chat.throttle_interval == 1.0
    assert settings.chat.notification_ttl == 5.0
    assert settings.chat.reconnect_delay == 2.0
    assert settings.chat.refresh_interval == 30


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "settings.json"
    settings = Settings(
        twitch=TwitchSettings(channel="streamer", client_id="cid", access_token="tok"),
        chat=ChatSettings(history_limit=50),
    )
    settings.save(path)

    loaded = Settings.load(path, environ={})
    assert loaded.twitch.channel == "streamer"
    assert loaded.twitch.access_token == "tok"
    assert loaded.chat.history_limit == 50


def test_invalid_values_are_clamped(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "chat": {
                    "history_limit": 0,
                    "throttle_interval": "fast",
                    "refresh_interval": 1,
                    "reconnect_delay": True,
                }
            }
        )
    )
    loaded = Settings.load(path, environ={})
    assert loaded.chat.history_limit == 1
    assert loaded.chat.throttle_interval == 1.0
    assert loaded.chat.refresh_interval == 5
    assert loaded.chat.reconnect_delay == 2.0


def test_unreadable_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    assert Settings.load(path, environ={}) == Settings()


def test_environment_overrides(tmp_path):
    path = tmp_path / "settings.json"
    Settings(twitch=TwitchSettings(channel="stored")).save(path)

    loaded = Settings.load(path, environ={ENV_CHANNEL: "fromenv", ENV_BEARER_TOKEN: " abc "})
    assert loaded.twitch.channel == "fromenv"
    assert loaded.twitch.access_token == "abc"


def test_irc_password_prefix():
    assert TwitchSettings(irc_token="abc").irc_password == "oauth:abc"
    assert TwitchSettings(irc_token="oauth:abc").irc_password == "oauth:abc"
    assert TwitchSettings(access_token="helix").irc_password == "oauth:helix"
    assert TwitchSettings().irc_password == ""


@pytest.fixture
def memory_keyring(monkeypatch):
    import keyring
    from keyring.errors import PasswordDeleteError

    store = {}
    monkeypatch.setattr(credential_store, "_keyring_available", True)
    monkeypatch.setattr(keyring, "get_password", lambda service, key: store.get((service, key)))
    monkeypatch.setattr(
        keyring, "set_password", lambda service, key, value: store.__setitem__((service, key), value)
    )

    def delete_password(service, key):
        if store.pop((service, key), None) is None:
            raise PasswordDeleteError(key)

    monkeypatch.setattr(keyring, "delete_password", delete_password)
    return store


def test_tokens_go_to_keyring_not_json(tmp_path, memory_keyring):
    path = tmp_path / "settings.json"
    Settings(twitch=TwitchSettings(channel="streamer", access_token="tok")).save(path)

    on_disk = json.loads(path.read_text())
    assert "access_token" not in on_disk["twitch"]
    assert memory_keyring[(credential_store.SERVICE_NAME, "access_token")] == "tok"
    assert Settings.load(path, environ={}).twitch.access_token == "tok"


def test_plaintext_tokens_move_to_keyring_on_load(tmp_path, memory_keyring):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"twitch": {"channel": "streamer", "irc_token": "oauth:x"}}))

    loaded = Settings.load(path, environ={})

    assert loaded.twitch.irc_token == "oauth:x"
    assert memory_keyring[(credential_store.SERVICE_NAME, "irc_token")] == "oauth:x"
    assert "irc_token" not in json.loads(path.read_text())["twitch"]

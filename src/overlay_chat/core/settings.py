"""Settings management for the overlay chat client."""

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from appdirs import user_config_dir

logger = logging.getLogger(__name__)

APP_NAME = "overlay-chat"
APP_AUTHOR = "overlay-chat"

# Environment variables that override stored values
ENV_CHANNEL = "TWITCH_CHANNEL"
ENV_CLIENT_ID = "TWITCH_HELIX_CLIENT_ID"
ENV_BEARER_TOKEN = "TWITCH_HELIX_BEARER_TOKEN"
ENV_IRC_TOKEN = "TWITCH_IRC_TOKEN"
ENV_NICK = "TWITCH_NICK"


def get_config_dir() -> Path:
    """Get the configuration directory."""
    path = Path(user_config_dir(APP_NAME, APP_AUTHOR))
    path.mkdir(parents=True, exist_ok=True)
    return path


@dataclass
class TwitchSettings:
    """Twitch connection and API settings."""

    channel: str = ""  # Channel login to join and describe
    client_id: str = ""  # Helix Client-Id
    access_token: str = ""  # Helix bearer token
    irc_token: str = ""  # IRC PASS token (with or without "oauth:")
    nick: str = ""  # IRC nick; anonymous justinfan login when empty
    user_id: str = ""  # Token owner for EventSub conditions; resolved when empty

    @property
    def irc_password(self) -> str:
        token = self.irc_token or self.access_token
        if not token:
            return ""
        return token if token.startswith("oauth:") else f"oauth:{token}"


@dataclass
class ChatSettings:
    """Chat pipeline tuning."""

    history_limit: int = 20
    throttle_interval: float = 1.0  # seconds between "last message" publishes
    notification_ttl: float = 5.0  # seconds a notification stays visible
    reconnect_delay: float = 2.0  # seconds before reconnecting a dropped transport
    refresh_interval: int = 30  # seconds between stream metadata refreshes
    eventsub_enabled: bool = True
    category_art_width: int = 300
    category_art_height: int = 450


@dataclass
class Settings:
    """Application settings."""

    twitch: TwitchSettings = field(default_factory=TwitchSettings)
    chat: ChatSettings = field(default_factory=ChatSettings)

    @classmethod
    def load(cls, path: Path | None = None, environ: Mapping[str, str] | None = None) -> "Settings":
        """Load settings from file, keyring and environment."""
        from . import credential_store

        if path is None:
            path = get_config_dir() / "settings.json"

        settings = cls()
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
                settings = cls._from_dict(data)
            except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Ignoring unreadable settings file {path}: {e}")
                settings = cls()

            if credential_store.keyring_available():
                stored = credential_store.read_secrets()
                # Tokens still in plaintext JSON move to the keyring on first load
                plaintext = [
                    name
                    for name in credential_store.SECRET_FIELDS
                    if getattr(settings.twitch, name) and name not in stored
                ]
                for name, value in stored.items():
                    setattr(settings.twitch, name, value)
                if plaintext:
                    logger.info(f"Moving {', '.join(plaintext)} to the keyring")
                    settings.save(path)

        settings.apply_env(os.environ if environ is None else environ)
        return settings

    def apply_env(self, environ: Mapping[str, str]) -> None:
        """Override Twitch settings from environment variables."""
        overrides = {
            ENV_CHANNEL: "channel",
            ENV_CLIENT_ID: "client_id",
            ENV_BEARER_TOKEN: "access_token",
            ENV_IRC_TOKEN: "irc_token",
            ENV_NICK: "nick",
        }
        for env_key, attr in overrides.items():
            value = environ.get(env_key, "").strip()
            if value:
                setattr(self.twitch, attr, value)

    def save(self, path: Path | None = None) -> None:
        """Save settings to file, tokens to the keyring when possible."""
        from . import credential_store

        if path is None:
            path = get_config_dir() / "settings.json"

        path.parent.mkdir(parents=True, exist_ok=True)

        use_keyring = credential_store.write_secrets(
            {name: getattr(self.twitch, name) for name in credential_store.SECRET_FIELDS}
        )

        # Atomic write: write to temp file then rename to prevent corruption on crash
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix="settings_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._to_dict(exclude_secrets=use_keyring), f, indent=2)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        if not use_keyring:
            credential_store.restrict_to_owner(path)

    @staticmethod
    def _validate_int(value, default: int, min_val: int = 0, max_val: int | None = None) -> int:
        """Validate and constrain an integer value."""
        if not isinstance(value, int) or isinstance(value, bool):
            return default
        if value < min_val:
            return min_val
        if max_val is not None and value > max_val:
            return max_val
        return value

    @staticmethod
    def _validate_float(
        value, default: float, min_val: float = 0.0, max_val: float | None = None
    ) -> float:
        """Validate and constrain a float value (ints accepted)."""
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return default
        value = float(value)
        if value < min_val:
            return min_val
        if max_val is not None and value > max_val:
            return max_val
        return value

    @classmethod
    def _from_dict(cls, data: dict) -> "Settings":
        """Create Settings from a dictionary with validation."""
        settings = cls()

        if "twitch" in data:
            t = data["twitch"]
            settings.twitch = TwitchSettings(
                channel=t.get("channel", ""),
                client_id=t.get("client_id", ""),
                access_token=t.get("access_token", ""),
                irc_token=t.get("irc_token", ""),
                nick=t.get("nick", ""),
                user_id=t.get("user_id", ""),
            )

        if "chat" in data:
            c = data["chat"]
            defaults = ChatSettings()
            settings.chat = ChatSettings(
                history_limit=cls._validate_int(
                    c.get("history_limit"), defaults.history_limit, min_val=1, max_val=1000
                ),
                throttle_interval=cls._validate_float(
                    c.get("throttle_interval"), defaults.throttle_interval, max_val=60.0
                ),
                notification_ttl=cls._validate_float(
                    c.get("notification_ttl"), defaults.notification_ttl, max_val=3600.0
                ),
                reconnect_delay=cls._validate_float(
                    c.get("reconnect_delay"), defaults.reconnect_delay, min_val=0.1, max_val=600.0
                ),
                refresh_interval=cls._validate_int(
                    c.get("refresh_interval"), defaults.refresh_interval, min_val=5, max_val=3600
                ),
                eventsub_enabled=c.get("eventsub_enabled", defaults.eventsub_enabled),
                category_art_width=cls._validate_int(
                    c.get("category_art_width"), defaults.category_art_width, min_val=1
                ),
                category_art_height=cls._validate_int(
                    c.get("category_art_height"), defaults.category_art_height, min_val=1
                ),
            )

        return settings

    def _to_dict(self, exclude_secrets: bool = False) -> dict:
        """Convert Settings to a dictionary.

        If exclude_secrets is True, tokens are omitted (they are stored in the
        system keyring instead).
        """
        return {
            "twitch": {
                "channel": self.twitch.channel,
                "client_id": self.twitch.client_id,
                "nick": self.twitch.nick,
                "user_id": self.twitch.user_id,
                **(
                    {
                        "access_token": self.twitch.access_token,
                        "irc_token": self.twitch.irc_token,
                    }
                    if not exclude_secrets
                    else {}
                ),
            },
            "chat": {
                "history_limit": self.chat.history_limit,
                "throttle_interval": self.chat.throttle_interval,
                "notification_ttl": self.chat.notification_ttl,
                "reconnect_delay": self.chat.reconnect_delay,
                "refresh_interval": self.chat.refresh_interval,
                "eventsub_enabled": self.chat.eventsub_enabled,
                "category_art_width": self.chat.category_art_width,
                "category_art_height": self.chat.category_art_height,
            },
        }

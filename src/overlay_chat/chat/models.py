"""Data models for the chat ingestion pipeline."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import NamedTuple, Union

SYSTEM_SENDER = "system"


class Rgb(NamedTuple):
    """An sRGB color with 0-255 channels."""

    red: int
    green: int
    blue: int


# Sender colors used when a message carries none
NEUTRAL_COLOR = Rgb(255, 255, 255)
SYSTEM_COLOR = Rgb(128, 128, 128)
DEFAULT_SENDER_COLOR = Rgb(255, 0, 0)


def new_message_id() -> str:
    """Generate an opaque id for messages that arrive without one."""
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BadgeDisplay:
    """A badge resolved against the badge catalog."""

    set_id: str
    version: str
    url: str | None = None


@dataclass(frozen=True)
class EmoteRef:
    """An emote image reference stored in an emote namespace."""

    url: str
    animated: bool = False


@dataclass(frozen=True)
class TextPart:
    """Plain text run inside a parsed message."""

    text: str


@dataclass(frozen=True)
class EmotePart:
    """An emote token inside a parsed message."""

    name: str
    url: str
    animated: bool = False


MessagePart = Union[TextPart, EmotePart]


@dataclass(frozen=True)
class ChatMessage:
    """A single chat line, ready for display."""

    id: str
    sender: str
    text: str
    badges: tuple[tuple[str, str], ...] = ()
    color: Rgb | None = None
    badge_views: tuple[BadgeDisplay, ...] = ()
    is_system: bool = False
    timestamp: datetime = field(default_factory=_now)

    @property
    def display_color(self) -> Rgb:
        """Color the sender name should be drawn with."""
        if self.is_system or self.sender == SYSTEM_SENDER:
            return SYSTEM_COLOR
        return self.color or DEFAULT_SENDER_COLOR

    def with_badge_views(self, badge_views) -> "ChatMessage":
        """Return a copy carrying resolved badge display records."""
        return replace(self, badge_views=tuple(badge_views))


@dataclass(frozen=True)
class NotificationEvent:
    """An EventSub notification (reward redemption and similar)."""

    id: str
    sender: str
    text: str
    kind: str = ""
    badges: tuple[tuple[str, str], ...] = ()
    color: Rgb | None = SYSTEM_COLOR
    badge_views: tuple[BadgeDisplay, ...] = ()
    timestamp: datetime = field(default_factory=_now)

    def to_message(self) -> ChatMessage:
        """Mirror this notification into the chat history."""
        return ChatMessage(
            id=new_message_id(),
            sender=self.sender,
            text=self.text,
            badges=self.badges,
            color=self.color,
            badge_views=self.badge_views,
            timestamp=self.timestamp,
        )


@dataclass(frozen=True)
class StreamMetadata:
    """Stream title, category and category artwork."""

    title: str = ""
    category_name: str = ""
    category_image_url: str | None = None


def system_message(text: str) -> ChatMessage:
    """Build a gray system message (connection problems and the like)."""
    return ChatMessage(
        id=new_message_id(),
        sender=SYSTEM_SENDER,
        text=text,
        color=SYSTEM_COLOR,
        is_system=True,
    )

"""Observable chat state shared with the presentation layer."""

import logging
from collections import deque
from collections.abc import Mapping
from functools import partial

from PySide6.QtCore import QObject, QTimer, Signal

from ..core.settings import ChatSettings
from .badges import BadgeCatalog
from .emotes.matcher import parse_message_parts
from .emotes.resolver import EmoteResolver
from .models import ChatMessage, EmoteRef, MessagePart, NotificationEvent, StreamMetadata

logger = logging.getLogger(__name__)

# How many recent message ids are remembered for de-duplication
SEEN_ID_WINDOW = 500


class ChatState(QObject):
    """Single container for everything the overlay displays.

    Lives on the Qt main thread; every mutation goes through one of the
    methods below and is announced by a change signal. Network code never
    touches it directly.
    """

    last_message_changed = Signal(object)  # ChatMessage
    message_added = Signal(object)  # ChatMessage
    messages_changed = Signal()
    notification_added = Signal(object)  # NotificationEvent
    notification_removed = Signal(str)  # notification id
    notifications_changed = Signal()
    badge_catalog_changed = Signal(object)  # BadgeCatalog
    emotes_changed = Signal(str)  # namespace
    stream_title_changed = Signal(str)
    category_name_changed = Signal(str)
    category_image_url_changed = Signal(object)  # str | None

    def __init__(self, settings: ChatSettings | None = None, parent: QObject | None = None):
        super().__init__(parent)
        self.settings = settings or ChatSettings()
        limit = self.settings.history_limit
        self._messages: deque[ChatMessage] = deque(maxlen=limit)
        self._notifications: deque[NotificationEvent] = deque(maxlen=limit)
        self._last_message: ChatMessage | None = None
        self._seen_ids: deque[str] = deque(maxlen=SEEN_ID_WINDOW)
        self._seen_set: set[str] = set()
        self._badge_catalog = BadgeCatalog()
        self._emotes = EmoteResolver()
        self._metadata = StreamMetadata()

    # --- Read-only views ---

    @property
    def last_message(self) -> ChatMessage | None:
        return self._last_message

    @property
    def messages(self) -> list[ChatMessage]:
        """Message history, oldest first."""
        return list(self._messages)

    @property
    def notifications(self) -> list[NotificationEvent]:
        return list(self._notifications)

    @property
    def badge_catalog(self) -> BadgeCatalog:
        return self._badge_catalog

    @property
    def emotes(self) -> EmoteResolver:
        return self._emotes

    @property
    def stream_metadata(self) -> StreamMetadata:
        return self._metadata

    @property
    def stream_title(self) -> str:
        return self._metadata.title

    @property
    def category_name(self) -> str:
        return self._metadata.category_name

    @property
    def category_image_url(self) -> str | None:
        return self._metadata.category_image_url

    def parse_message(self, text: str) -> list[MessagePart]:
        """Split text into text and emote parts using the current emote maps."""
        return parse_message_parts(text, self._emotes)

    # --- Messages ---

    def _remember(self, message_id: str) -> bool:
        """Record an id; False when it was already seen recently."""
        if message_id in self._seen_set:
            return False
        if len(self._seen_ids) == self._seen_ids.maxlen:
            self._seen_set.discard(self._seen_ids[0])
        self._seen_ids.append(message_id)
        self._seen_set.add(message_id)
        return True

    def append_message(self, message: ChatMessage) -> bool:
        """Add a message to the history, evicting the oldest past the limit.

        Returns False (and changes nothing) for a message id seen recently.
        """
        if not self._remember(message.id):
            logger.debug(f"Dropping duplicate message {message.id}")
            return False
        self._messages.append(message)
        self.message_added.emit(message)
        self.messages_changed.emit()
        return True

    def set_last_message(self, message: ChatMessage) -> None:
        self._last_message = message
        self.last_message_changed.emit(message)

    # --- Notifications ---

    def add_notification(self, event: NotificationEvent) -> bool:
        """Append a notification and schedule its removal after the TTL."""
        if not self._remember(f"notification:{event.id}"):
            logger.debug(f"Dropping duplicate notification {event.id}")
            return False
        self._notifications.append(event)
        self.notification_added.emit(event)
        self.notifications_changed.emit()

        ttl_ms = int(self.settings.notification_ttl * 1000)
        QTimer.singleShot(ttl_ms, partial(self.remove_notification, event.id))
        return True

    def remove_notification(self, notification_id: str) -> bool:
        """Remove a notification by id; no-op when it is already gone."""
        for event in self._notifications:
            if event.id == notification_id:
                self._notifications.remove(event)
                self.notification_removed.emit(notification_id)
                self.notifications_changed.emit()
                return True
        return False

    # --- Catalogs ---

    def set_badge_catalog(self, catalog: BadgeCatalog) -> None:
        if catalog == self._badge_catalog:
            return
        self._badge_catalog = catalog
        logger.info(f"Badge catalog updated: {len(catalog)} sets")
        self.badge_catalog_changed.emit(catalog)

    def set_emote_namespace(self, namespace: str, emotes: Mapping[str, EmoteRef]) -> None:
        """Replace one emote namespace wholesale."""
        self._emotes.set_namespace(namespace, emotes)
        logger.info(f"Emote namespace {namespace}: {len(emotes)} emotes")
        self.emotes_changed.emit(namespace)

    # --- Stream metadata ---

    def apply_stream_metadata(self, metadata: StreamMetadata) -> list[str]:
        """Store new metadata, announcing only the fields that changed.

        Returns the names of the changed fields.
        """
        previous = self._metadata
        self._metadata = metadata
        changed: list[str] = []
        if metadata.title != previous.title:
            changed.append("stream_title")
            self.stream_title_changed.emit(metadata.title)
        if metadata.category_name != previous.category_name:
            changed.append("category_name")
            self.category_name_changed.emit(metadata.category_name)
        if metadata.category_image_url != previous.category_image_url:
            changed.append("category_image_url")
            self.category_image_url_changed.emit(metadata.category_image_url)
        if changed:
            logger.debug(f"Stream metadata changed: {', '.join(changed)}")
        return changed

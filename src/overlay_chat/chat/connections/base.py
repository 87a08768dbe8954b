"""Base chat connection abstract class."""

import logging
from abc import abstractmethod

from PySide6.QtCore import QObject, Signal

from ..models import ChatMessage, NotificationEvent

logger = logging.getLogger(__name__)

# Fixed delay before a dropped transport is reopened
RECONNECT_DELAY = 2.0  # seconds


class BaseChatConnection(QObject):
    """Abstract base class for chat transports.

    Connections run on the shared network loop thread and emit signals for
    the main thread to consume. Every signal carries the generation the
    connection was created with, so the receiver can ignore output from a
    connection it has already replaced.
    """

    # Emitted with batched messages (generation, list of ChatMessage)
    messages_received = Signal(int, list)
    # Emitted on EventSub notifications (generation, NotificationEvent)
    notification_received = Signal(int, object)
    # Connection state signals
    connected = Signal(int)
    disconnected = Signal(int)
    error = Signal(int, str)

    def __init__(self, generation: int = 0, parent: QObject | None = None):
        super().__init__(parent)
        self.generation = generation
        self._is_connected: bool = False
        self._should_stop: bool = False

    @property
    def is_connected(self) -> bool:
        """Whether the transport is currently open."""
        return self._is_connected

    @abstractmethod
    async def run(self) -> None:
        """Connect and consume the transport until it ends or is cancelled."""

    def stop(self) -> None:
        """Ask the read loop to finish; the owner cancels the task as well."""
        self._should_stop = True

    def _set_connected(self) -> None:
        self._is_connected = True
        self.connected.emit(self.generation)

    def _set_disconnected(self) -> None:
        if self._is_connected:
            self._is_connected = False
            self.disconnected.emit(self.generation)

    def _emit_messages(self, messages: list[ChatMessage]) -> None:
        """Emit a batch of messages."""
        if messages:
            self.messages_received.emit(self.generation, messages)

    def _emit_notification(self, event: NotificationEvent) -> None:
        self.notification_received.emit(self.generation, event)

    def _emit_error(self, message: str) -> None:
        """Emit an error."""
        logger.error(f"Chat connection error ({self.__class__.__name__}): {message}")
        self.error.emit(self.generation, message)

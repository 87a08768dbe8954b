"""Rate limiting for the "last message" slot."""

import time

from PySide6.QtCore import QObject, QTimer, Signal


class MessageThrottle(QObject):
    """Publishes at most one value per interval.

    A value submitted while the window is open replaces any pending value;
    one single-shot timer flushes the pending value when the window elapses.
    """

    published = Signal(object)

    def __init__(self, interval: float = 1.0, parent: QObject | None = None):
        super().__init__(parent)
        self._interval = interval
        self._last_publish: float | None = None
        self._pending: object | None = None
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._flush)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def pending(self) -> object | None:
        return self._pending

    @property
    def is_waiting(self) -> bool:
        return self._timer.isActive()

    def submit(self, value: object) -> None:
        now = time.monotonic()
        elapsed = None if self._last_publish is None else now - self._last_publish
        if elapsed is None or elapsed >= self._interval:
            self._timer.stop()
            self._pending = None
            self._publish(value, now)
            return

        self._pending = value
        if not self._timer.isActive():
            remaining_ms = max(0, int((self._interval - elapsed) * 1000))
            self._timer.start(remaining_ms)

    def cancel(self) -> None:
        """Drop any pending value and stop the timer."""
        self._timer.stop()
        self._pending = None

    def _flush(self) -> None:
        if self._pending is None:
            return
        value, self._pending = self._pending, None
        self._publish(value, time.monotonic())

    def _publish(self, value: object, now: float) -> None:
        self._last_publish = now
        self.published.emit(value)

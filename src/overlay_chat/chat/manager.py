"""Chat ingestion client - orchestrates connections, catalogs and metadata."""

import asyncio
import concurrent.futures
import logging
from collections.abc import Coroutine
from functools import partial

from PySide6.QtCore import QObject, QThread, QTimer, Signal

from ..api.metadata import FETCH_ERRORS, REDEMPTION_SUBSCRIPTION, MetadataFetcher
from ..core.settings import Settings
from .badges import BadgeCatalog
from .connections.eventsub import EventSubConnection
from .connections.twitch import TwitchIrcConnection
from .models import ChatMessage, NotificationEvent, StreamMetadata, system_message
from .state import ChatState
from .throttle import MessageThrottle

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_MS = 5000


def log_task_failure(name: str, future: concurrent.futures.Future) -> None:
    """Done-callback: log a network task that ended with an unexpected exception."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(f"{name} task stopped: {exc!r}", exc_info=exc)


class AsyncLoopWorker(QThread):
    """Worker thread that owns the asyncio event loop for all network tasks."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self._loop = asyncio.new_event_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def run(self):
        """Run the event loop until stop() is requested."""
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()

    def submit(self, coro: Coroutine) -> concurrent.futures.Future:
        """Schedule a coroutine on the loop; cancelling the future cancels it."""
        if not self.isRunning():
            self.start()
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def stop(self, timeout_ms: int = SHUTDOWN_TIMEOUT_MS) -> None:
        """Request the loop to stop and wait for the thread."""
        if self.isRunning():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self.wait(timeout_ms)
        elif not self._loop.is_closed():
            self._loop.close()


class ChatIngestionClient(QObject):
    """Merges IRC chat, EventSub events and Helix metadata into a ChatState.

    Network work runs on one AsyncLoopWorker; results come back through
    queued signals so that ChatState is only ever mutated on the main thread.
    Output from a replaced IRC connection is recognised by its generation
    and ignored.
    """

    # Emitted on connection errors (error_message)
    error_occurred = Signal(str)

    # Results posted from the network loop to the main thread
    metadata_fetched = Signal(object)  # StreamMetadata
    badges_fetched = Signal(object)  # BadgeCatalog
    emotes_fetched = Signal(str, object)  # namespace, {name: EmoteRef}

    def __init__(
        self,
        settings: Settings,
        fetcher: MetadataFetcher | None = None,
        parent: QObject | None = None,
        auto_connect: bool = True,
    ):
        super().__init__(parent)
        self.settings = settings
        self.fetcher = fetcher or MetadataFetcher(settings.twitch, settings.chat)
        self.state = ChatState(settings.chat, parent=self)

        self._worker = AsyncLoopWorker(parent=self)
        self._active = False
        self._generation = 0

        self._irc: TwitchIrcConnection | None = None
        self._irc_future: concurrent.futures.Future | None = None
        self._eventsub: EventSubConnection | None = None
        self._eventsub_future: concurrent.futures.Future | None = None
        self._metadata_future: concurrent.futures.Future | None = None
        self._catalog_futures: list[concurrent.futures.Future] = []

        self._throttle = MessageThrottle(settings.chat.throttle_interval, parent=self)
        self._throttle.published.connect(self.state.set_last_message)

        self._reconnect_timer = QTimer(self)
        self._reconnect_timer.setSingleShot(True)
        self._reconnect_timer.setInterval(int(settings.chat.reconnect_delay * 1000))
        self._reconnect_timer.timeout.connect(self._reconnect)

        self.metadata_fetched.connect(self._on_metadata_fetched)
        self.badges_fetched.connect(self._on_badges_fetched)
        self.emotes_fetched.connect(self._on_emotes_fetched)

        if auto_connect:
            self._start_background()

    @property
    def generation(self) -> int:
        """Generation of the current IRC connection."""
        return self._generation

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_reconnect_pending(self) -> bool:
        return self._reconnect_timer.isActive()

    # --- Lifecycle ---

    def start(self) -> None:
        """(Re)open the IRC connection and resume background work."""
        self._active = True
        self._reconnect_timer.stop()
        self._teardown_irc()

        self._generation += 1
        connection = TwitchIrcConnection(self.settings.twitch, generation=self._generation)
        connection.messages_received.connect(self._on_irc_messages)
        connection.error.connect(self._on_irc_error)
        connection.connected.connect(self._on_irc_connected)
        self._irc = connection
        logger.info(
            f"Starting Twitch chat for #{connection.channel} (generation {self._generation})"
        )
        self._irc_future = self._worker.submit(connection.run())
        self._irc_future.add_done_callback(partial(log_task_failure, "Twitch IRC"))

        self._start_background()

    def stop(self) -> None:
        """Cancel every connection, timer and loop. History is kept."""
        if not self._active and self._irc is None:
            return
        logger.info("Stopping Twitch chat")
        self._active = False
        # Late completions from the old connection now fail the generation check
        self._generation += 1
        self._reconnect_timer.stop()
        self._throttle.cancel()
        self._teardown_irc()
        self._teardown_eventsub()

        for future in [self._metadata_future, *self._catalog_futures]:
            if future is not None:
                future.cancel()
        self._metadata_future = None
        self._catalog_futures.clear()

    def shutdown(self) -> None:
        """Stop everything and release the network loop. Final."""
        self.stop()
        if self._worker.isRunning():
            future = self._worker.submit(self.fetcher.close())
            try:
                future.result(timeout=2)
            except Exception as e:
                logger.warning(f"Could not close HTTP sessions cleanly: {e}")
        self._worker.stop()

    def _start_background(self) -> None:
        """Start the metadata loop and EventSub unless they are running."""
        self._active = True
        if self._metadata_future is None or self._metadata_future.done():
            self._metadata_future = self._worker.submit(self._metadata_loop())
            self._metadata_future.add_done_callback(partial(log_task_failure, "Stream metadata"))

        if not self.settings.chat.eventsub_enabled:
            return
        if not self.fetcher.helix.has_credentials:
            logger.info("EventSub disabled: no Helix credentials configured")
            return
        if self._eventsub_future is None or self._eventsub_future.done():
            self._start_eventsub()

    def _start_eventsub(self) -> None:
        connection = EventSubConnection(
            self.fetcher,
            generation=self._generation,
            reconnect_delay=self.settings.chat.reconnect_delay,
        )
        connection.messages_received.connect(self._on_eventsub_messages)
        connection.notification_received.connect(self._on_notification)
        self._eventsub = connection
        self._eventsub_future = self._worker.submit(connection.run())
        self._eventsub_future.add_done_callback(partial(log_task_failure, "EventSub"))

    def _teardown_irc(self) -> None:
        if self._irc is not None:
            self._irc.stop()
            self._disconnect_signals(
                self._irc.messages_received, self._irc.error, self._irc.connected
            )
        if self._irc_future is not None:
            self._irc_future.cancel()
        self._irc = None
        self._irc_future = None

    def _teardown_eventsub(self) -> None:
        if self._eventsub is not None:
            self._eventsub.stop()
            self._disconnect_signals(
                self._eventsub.messages_received, self._eventsub.notification_received
            )
        if self._eventsub_future is not None:
            self._eventsub_future.cancel()
        self._eventsub = None
        self._eventsub_future = None

    @staticmethod
    def _disconnect_signals(*signals) -> None:
        """Disconnect connection signals to break reference cycles."""
        for signal in signals:
            try:
                signal.disconnect()
            except (RuntimeError, TypeError):
                # Signal may already be disconnected
                pass

    def _reconnect(self) -> None:
        if self._active:
            logger.info("Reconnecting Twitch chat")
            self.start()

    # --- Catalogs ---

    async def load_all_badges(self, channel_login: str | None = None) -> None:
        """Fetch global + channel badges and publish the merged catalog."""
        login = channel_login or self.settings.twitch.channel
        try:
            catalog = await self.fetcher.load_badges(login)
        except Exception as e:
            logger.error(f"Badge loading failed for {login}: {e}")
            return
        if catalog is None:
            logger.warning(f"No badges loaded for {login}, keeping previous catalog")
            return
        self.badges_fetched.emit(catalog)

    async def load_global_emotes(self) -> None:
        """Load every emote namespace in order, publishing each as it arrives."""
        login = self.settings.twitch.channel
        try:
            async for namespace, emotes in self.fetcher.iter_emote_namespaces(login):
                self.emotes_fetched.emit(namespace, emotes)
        except Exception as e:
            logger.error(f"Emote loading failed for {login}: {e}")

    def refresh_catalogs(self) -> None:
        """Schedule badge and emote loading on the network loop."""
        self._catalog_futures = [f for f in self._catalog_futures if not f.done()]
        self._catalog_futures.append(self._worker.submit(self.load_all_badges()))
        self._catalog_futures.append(self._worker.submit(self.load_global_emotes()))

    # --- Stream metadata ---

    async def _metadata_loop(self) -> None:
        """Refresh stream metadata until cancelled."""
        interval = self.settings.chat.refresh_interval
        logger.info(f"Stream metadata loop started (every {interval}s)")
        while True:
            try:
                metadata = await self.fetcher.refresh_stream_info()
            except FETCH_ERRORS as e:
                logger.warning(f"Stream metadata refresh failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error refreshing stream metadata: {e}")
            else:
                self.metadata_fetched.emit(metadata)
            await asyncio.sleep(interval)

    # --- Main-thread slots ---

    def _accept_message(self, message: ChatMessage) -> bool:
        """Resolve badges once, store the message and offer it to the throttle."""
        resolved = message.with_badge_views(self.state.badge_catalog.resolve(message.badges))
        if not self.state.append_message(resolved):
            return False
        self._throttle.submit(resolved)
        return True

    def _on_irc_connected(self, generation: int) -> None:
        if generation == self._generation and self._active:
            logger.info(f"Twitch chat connected (generation {generation})")

    def _on_irc_messages(self, generation: int, messages: list) -> None:
        if generation != self._generation or not self._active:
            return
        for message in messages:
            self._accept_message(message)

    def _on_irc_error(self, generation: int, message: str) -> None:
        if generation != self._generation or not self._active:
            return
        self._accept_message(system_message(message))
        self.error_occurred.emit(message)
        logger.info(f"Reconnecting in {self._reconnect_timer.interval() / 1000:.1f}s")
        self._reconnect_timer.start()

    def _on_eventsub_messages(self, generation: int, messages: list) -> None:
        if not self._active:
            return
        for message in messages:
            self._accept_message(message)

    def _on_notification(self, generation: int, event: NotificationEvent) -> None:
        if not self._active:
            return
        if not self.state.add_notification(event):
            return
        if event.kind == REDEMPTION_SUBSCRIPTION:
            self.state.append_message(event.to_message())

    def _on_metadata_fetched(self, metadata: StreamMetadata) -> None:
        if self._active:
            self.state.apply_stream_metadata(metadata)

    def _on_badges_fetched(self, catalog: BadgeCatalog) -> None:
        self.state.set_badge_catalog(catalog)

    def _on_emotes_fetched(self, namespace: str, emotes: dict) -> None:
        self.state.set_emote_namespace(namespace, emotes)

#!/usr/bin/env python3
"""Main entry point for Overlay Chat."""

import logging
import signal
import sys


def setup_logging(level: int = logging.INFO) -> None:
    """Set up logging configuration."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Suppress noisy third-party loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def run() -> int:
    """Run the headless client until interrupted."""
    from PySide6.QtCore import QCoreApplication, QTimer

    from .chat.manager import ChatIngestionClient
    from .core.settings import Settings

    logger = logging.getLogger("overlay_chat")

    settings = Settings.load()
    if not settings.twitch.channel:
        logger.error("No channel configured. Set TWITCH_CHANNEL or add it to settings.json")
        return 1

    app = QCoreApplication(sys.argv)
    app.setApplicationName("overlay-chat")

    client = ChatIngestionClient(settings)
    state = client.state

    state.last_message_changed.connect(
        lambda msg: logger.info(f"[chat] {msg.sender}: {msg.text}")
    )
    state.notification_added.connect(
        lambda event: logger.info(f"[notification] {event.sender}: {event.text}")
    )
    state.stream_title_changed.connect(lambda title: logger.info(f"[title] {title}"))
    state.category_name_changed.connect(lambda name: logger.info(f"[category] {name}"))
    state.category_image_url_changed.connect(lambda url: logger.info(f"[category art] {url}"))

    client.start()
    client.refresh_catalogs()
    app.aboutToQuit.connect(client.shutdown)

    # Let Ctrl+C reach Python: Qt only returns to the interpreter between events
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    interrupt_timer = QTimer()
    interrupt_timer.timeout.connect(lambda: None)
    interrupt_timer.start(250)

    return app.exec()


def main() -> int:
    """Main entry point."""
    setup_logging()

    try:
        return run()
    except ImportError as e:
        logging.error(f"Failed to import Qt: {e}")
        logging.error("Make sure PySide6 is installed:")
        logging.error("  pip install PySide6")
        return 1


if __name__ == "__main__":
    sys.exit(main())

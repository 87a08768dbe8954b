"""Core settings and utilities for Overlay Chat."""

from .settings import ChatSettings, Settings, TwitchSettings

__all__ = [
    "ChatSettings",
    "Settings",
    "TwitchSettings",
]

"""API clients for Twitch and the emote providers."""

from .base import ApiError, BaseApiClient
from .identity import ChannelIdentityService, ChannelLookupError
from .metadata import MetadataFetcher
from .twitch import TwitchHelixClient

__all__ = [
    "ApiError",
    "BaseApiClient",
    "ChannelIdentityService",
    "ChannelLookupError",
    "MetadataFetcher",
    "TwitchHelixClient",
]

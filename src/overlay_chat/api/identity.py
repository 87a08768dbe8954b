"""Channel identity resolution with caching and request coalescing."""

import asyncio
import logging

from .twitch import TwitchHelixClient

logger = logging.getLogger(__name__)


class ChannelLookupError(Exception):
    """The upstream returned no user for the requested login."""


class ChannelIdentityService:
    """Resolves channel logins to numeric ids, once.

    Construct one instance per application and hand it to every component
    that needs channel ids. Concurrent callers asking for the same login
    while a lookup is in flight all await that single lookup. The service
    must be used from one event loop.
    """

    def __init__(self, helix: TwitchHelixClient):
        self._helix = helix
        self._cache: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def cached(self, login: str) -> str | None:
        return self._cache.get(login.lower())

    async def resolve(self, login: str) -> str:
        """Return the numeric id for login.

        Raises:
            ChannelLookupError: no user matches the login.
        """
        key = login.lower()
        if key in self._cache:
            return self._cache[key]

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._resolve_once(key))
            self._inflight[key] = task
        # Shield so one cancelled caller does not cancel the shared lookup
        return await asyncio.shield(task)

    async def _resolve_once(self, login: str) -> str:
        try:
            user_id = await self._lookup(login)
            if not user_id:
                raise ChannelLookupError(f"No Twitch user matches login '{login}'")
            self._cache[login] = user_id
            logger.info(f"Resolved Twitch login '{login}' to user ID {user_id}")
            return user_id
        finally:
            self._inflight.pop(login, None)

    async def _lookup(self, login: str) -> str | None:
        """Helix lookup when credentials exist, public IVR lookup otherwise."""
        if self._helix.has_credentials:
            return await self._helix.get_user_id(login)
        logger.debug(f"No Helix credentials, resolving '{login}' through IVR")
        return await self._helix.get_user_id_public(login)

"""Base API client interface."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod

import aiohttp

logger = logging.getLogger(__name__)


async def safe_json(resp: aiohttp.ClientResponse) -> dict | list | None:
    """Decode a JSON body, or None for HTML error pages and malformed bodies."""
    try:
        return await resp.json()
    except (aiohttp.ContentTypeError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to parse JSON response: {e}")
        return None


class ApiError(Exception):
    """An upstream API answered with an unexpected status or body."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class BaseApiClient(ABC):
    """Abstract base class for HTTP API clients.

    The session is created lazily on first use so that it binds to the
    event loop the client is actually used from.
    """

    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the display name for this API."""
        ...

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=30)
            connector = aiohttp.TCPConnector(limit=20)
            self._session = aiohttp.ClientSession(timeout=timeout, connector=connector)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            try:
                await self._session.close()
                # Allow time for underlying connections to fully close
                await asyncio.sleep(0.1)
            except RuntimeError as e:
                # Session may be attached to a different event loop
                if "attached to a different loop" in str(e):
                    logger.debug(f"Session attached to different loop, skipping close: {e}")
                else:
                    raise
            finally:
                self._session = None

    def _is_retryable_status(self, status: int) -> bool:
        """Check if an HTTP status code indicates a transient error."""
        return status >= 500 or status == 429

    async def _request_json(
        self,
        method: str,
        url: str,
        expected: tuple[int, ...] = (200,),
        **kwargs,
    ) -> dict | list:
        """Perform a request and return the decoded JSON body.

        Raises:
            ApiError: on an unexpected status or an undecodable body.
            aiohttp.ClientError / asyncio.TimeoutError: on transport failures.
        """
        async with self.session.request(method, url, **kwargs) as resp:
            if resp.status not in expected:
                kind = "transient" if self._is_retryable_status(resp.status) else "permanent"
                raise ApiError(
                    f"{self.name}: {method} {url} returned {resp.status} ({kind})",
                    status=resp.status,
                )
            data = await safe_json(resp)
            if data is None:
                raise ApiError(f"{self.name}: {method} {url} returned no JSON", resp.status)
            return data

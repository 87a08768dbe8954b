"""Twitch EventSub WebSocket connection."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone

import aiohttp

from ...api.metadata import (
    CHAT_MESSAGE_SUBSCRIPTION,
    FETCH_ERRORS,
    REDEMPTION_SUBSCRIPTION,
    MetadataFetcher,
)
from ..colors import color_from_hex
from ..models import SYSTEM_COLOR, ChatMessage, NotificationEvent, new_message_id
from .base import RECONNECT_DELAY, BaseChatConnection

logger = logging.getLogger(__name__)

EVENTSUB_WS_URL = "wss://eventsub.wss.twitch.tv/ws"

# Sender used when a notification names no user
EVENTSUB_SENDER = "eventsub"

# Raised by the mappers on frames whose fields have unexpected types
MALFORMED_FRAME_ERRORS = (AttributeError, TypeError, KeyError, ValueError)

# Seconds the replaced socket is still read after the new session_welcome
HANDOVER_DRAIN_TIMEOUT = 1.0


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _as_str(value) -> str:
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class EventSubEnvelope:
    """A decoded EventSub frame: metadata plus raw payload."""

    message_type: str
    message_id: str = ""
    subscription_type: str = ""
    payload: dict = field(default_factory=dict)

    @property
    def session(self) -> dict:
        return _as_dict(self.payload.get("session"))

    @property
    def event(self) -> dict:
        return _as_dict(self.payload.get("event"))


def parse_envelope(text: str) -> EventSubEnvelope | None:
    """Decode one EventSub text frame; None when it is not a valid envelope."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"EventSub: undecodable frame ({e})")
        return None
    if not isinstance(data, dict):
        return None

    metadata = data.get("metadata")
    if not isinstance(metadata, dict) or not _as_str(metadata.get("message_type")):
        return None

    return EventSubEnvelope(
        message_type=metadata["message_type"],
        message_id=_as_str(metadata.get("message_id")),
        subscription_type=_as_str(metadata.get("subscription_type")),
        payload=_as_dict(data.get("payload")),
    )


def _event_timestamp(value) -> datetime:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def parse_redemption(event: dict) -> NotificationEvent:
    """Channel points redemption -> notification."""
    title = _as_str(_as_dict(event.get("reward")).get("title"))
    text = f"Redeemed {title}" if title else "Redeemed a reward"
    user_input = _as_str(event.get("user_input"))
    if user_input:
        text = f"{text}: {user_input}"
    return NotificationEvent(
        id=_as_str(event.get("id")) or new_message_id(),
        sender=(
            _as_str(event.get("user_name")) or _as_str(event.get("user_login")) or EVENTSUB_SENDER
        ),
        text=text,
        kind=REDEMPTION_SUBSCRIPTION,
        color=SYSTEM_COLOR,
        timestamp=_event_timestamp(event.get("redeemed_at")),
    )


def parse_chat_message(event: dict) -> ChatMessage | None:
    """`channel.chat.message` event -> ChatMessage (None without a sender)."""
    sender = _as_str(event.get("chatter_user_name")) or _as_str(event.get("chatter_user_login"))
    if not sender:
        return None

    badges = []
    raw_badges = event.get("badges")
    for badge in raw_badges if isinstance(raw_badges, list) else []:
        badge = _as_dict(badge)
        set_id, version = _as_str(badge.get("set_id")), _as_str(badge.get("id"))
        if set_id and version:
            badges.append((set_id, version))

    color = _as_str(event.get("color"))
    return ChatMessage(
        id=_as_str(event.get("message_id")) or new_message_id(),
        sender=sender,
        text=_as_str(_as_dict(event.get("message")).get("text")),
        badges=tuple(badges),
        color=color_from_hex(color) if color else None,
    )


def parse_generic_notification(subscription_type: str, event: dict) -> NotificationEvent:
    """Any other subscription type -> a plain notification record."""
    sender = (
        _as_str(event.get("user_name"))
        or _as_str(event.get("broadcaster_user_name"))
        or EVENTSUB_SENDER
    )
    return NotificationEvent(
        id=_as_str(event.get("id")) or new_message_id(),
        sender=sender,
        text=subscription_type or "notification",
        kind=subscription_type,
        color=SYSTEM_COLOR,
    )


class EventSubConnection(BaseChatConnection):
    """EventSub WebSocket client.

    Subscribes the session on welcome, dispatches notifications by
    subscription type and follows `session_reconnect`. Transport errors are
    retried after a fixed delay for as long as the connection runs.
    """

    def __init__(
        self,
        fetcher: MetadataFetcher,
        generation: int = 0,
        url: str = EVENTSUB_WS_URL,
        reconnect_delay: float = RECONNECT_DELAY,
        parent=None,
    ):
        super().__init__(generation, parent)
        self._fetcher = fetcher
        self._url = url
        self._reconnect_delay = reconnect_delay
        self._next_url: str | None = None
        self._session_id: str | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    async def run(self) -> None:
        """Keep an EventSub session open until stopped or cancelled."""
        self._should_stop = False
        try:
            while not self._should_stop:
                url = self._next_url or self._url
                self._next_url = None
                try:
                    await self._run_session(url)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    logger.warning(f"EventSub transport error: {e}")
                finally:
                    self._set_disconnected()

                if self._should_stop:
                    break
                if self._next_url:
                    logger.info("EventSub: following reconnect URL")
                    continue
                logger.info(f"EventSub: reconnecting in {self._reconnect_delay:.1f}s")
                await asyncio.sleep(self._reconnect_delay)
        finally:
            self._session_id = None

    async def _run_session(self, url: str) -> None:
        async with aiohttp.ClientSession() as session:
            ws = await session.ws_connect(url)
            try:
                logger.info(f"EventSub: connected to {url}")
                self._set_connected()
                frames = self.iter_frames(ws)
                while True:
                    await self._consume(frames)
                    if self._should_stop or not self._next_url:
                        return
                    reconnect_url, self._next_url = self._next_url, None
                    try:
                        ws, frames = await self._hand_over(session, ws, frames, reconnect_url)
                    except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
                        # run() opens the reconnect URL again without waiting
                        self._next_url = reconnect_url
                        raise
            finally:
                await ws.close()

    async def _hand_over(
        self,
        session: aiohttp.ClientSession,
        old_ws: aiohttp.ClientWebSocketResponse,
        old_frames: AsyncIterator[EventSubEnvelope],
        url: str,
    ) -> tuple[aiohttp.ClientWebSocketResponse, AsyncIterator[EventSubEnvelope]]:
        """Open the reconnect URL while the old socket keeps delivering.

        Twitch keeps sending on the old socket until the new one has sent
        its welcome and closes the old socket shortly after. The old socket
        is read until it closes or HANDOVER_DRAIN_TIMEOUT passes.
        """
        logger.info(f"EventSub: handing over to {url}")
        new_ws = await session.ws_connect(url)
        new_frames = self.iter_frames(new_ws)
        draining = asyncio.ensure_future(self._drain(old_frames))
        try:
            await self._await_welcome(new_frames)
        except BaseException:
            draining.cancel()
            await asyncio.gather(draining, return_exceptions=True)
            await old_ws.close()
            await new_ws.close()
            raise

        done, _ = await asyncio.wait({draining}, timeout=HANDOVER_DRAIN_TIMEOUT)
        if not done:
            logger.debug("EventSub: old socket still open after handover, closing it")
            draining.cancel()
            await asyncio.gather(draining, return_exceptions=True)
        await old_ws.close()
        return new_ws, new_frames

    async def _drain(self, frames: AsyncIterator[EventSubEnvelope]) -> None:
        try:
            await self._consume(frames)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug(f"EventSub: old socket failed during handover: {e}")

    async def _await_welcome(self, frames: AsyncIterator[EventSubEnvelope]) -> None:
        async for envelope in frames:
            await self._dispatch(envelope)
            if envelope.message_type == "session_welcome":
                return
        raise ConnectionResetError("EventSub socket closed before session_welcome")

    async def _consume(self, frames: AsyncIterator[EventSubEnvelope]) -> None:
        """Dispatch frames until the socket closes, a reconnect is requested or we stop."""
        async for envelope in frames:
            await self._dispatch(envelope)
            if self._next_url or self._should_stop:
                break

    async def iter_frames(
        self, ws: aiohttp.ClientWebSocketResponse
    ) -> AsyncIterator[EventSubEnvelope]:
        """Yield decoded envelopes until the socket closes."""
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                envelope = parse_envelope(msg.data)
                if envelope is not None:
                    yield envelope
            elif msg.type == aiohttp.WSMsgType.BINARY:
                logger.debug(f"EventSub: ignoring binary frame ({len(msg.data)} bytes)")
            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break

    async def _dispatch(self, envelope: EventSubEnvelope) -> None:
        """Handle one frame; a malformed frame is logged and skipped."""
        try:
            await self._handle_envelope(envelope)
        except MALFORMED_FRAME_ERRORS as e:
            logger.warning(f"EventSub: skipping malformed {envelope.message_type} frame: {e!r}")

    async def _handle_envelope(self, envelope: EventSubEnvelope) -> None:
        message_type = envelope.message_type
        if message_type == "session_welcome":
            await self._on_welcome(envelope)
        elif message_type == "notification":
            self._on_notification(envelope)
        elif message_type == "session_keepalive":
            logger.debug("EventSub: keepalive")
        elif message_type == "session_reconnect":
            reconnect_url = _as_str(envelope.session.get("reconnect_url"))
            logger.info("EventSub: reconnect requested")
            self._next_url = reconnect_url or self._url
        elif message_type == "revocation":
            sub_type = _as_str(_as_dict(envelope.payload.get("subscription")).get("type"))
            logger.warning(f"EventSub: subscription {sub_type} revoked")
        else:
            logger.debug(f"EventSub: unhandled message type {message_type}")

    async def _on_welcome(self, envelope: EventSubEnvelope) -> None:
        session_id = _as_str(envelope.session.get("id"))
        if not session_id:
            logger.warning("EventSub: welcome without a session id")
            return
        self._session_id = session_id
        logger.info(f"EventSub: session_welcome, session_id={session_id}")
        try:
            await self._fetcher.ensure_eventsub_subscriptions(session_id)
        except FETCH_ERRORS as e:
            logger.warning(f"EventSub: could not subscribe session: {e}")

    def _on_notification(self, envelope: EventSubEnvelope) -> None:
        sub_type = envelope.subscription_type or _as_str(
            _as_dict(envelope.payload.get("subscription")).get("type")
        )
        event = envelope.event
        if sub_type == REDEMPTION_SUBSCRIPTION:
            self._emit_notification(parse_redemption(event))
        elif sub_type == CHAT_MESSAGE_SUBSCRIPTION:
            message = parse_chat_message(event)
            if message is not None:
                self._emit_messages([message])
        else:
            self._emit_notification(parse_generic_notification(sub_type, event))

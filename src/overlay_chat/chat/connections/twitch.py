"""Twitch IRC chat connection over TLS."""

import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from ...core.settings import TwitchSettings
from ..colors import color_from_hex
from ..models import ChatMessage, new_message_id
from .base import BaseChatConnection

logger = logging.getLogger(__name__)

TWITCH_IRC_HOST = "irc.chat.twitch.tv"
TWITCH_IRC_TLS_PORT = 6697

# IRC capabilities to request
IRC_CAPS = ["twitch.tv/tags"]

READ_CHUNK_SIZE = 4096

# IRCv3 tag value escapes; an unknown escape keeps the character, a trailing backslash is dropped
_TAG_ESCAPES = {":": ";", "s": " ", "\\": "\\", "r": "\r", "n": "\n"}
_TAG_ESCAPE_RE = re.compile(r"\\(.?)", re.DOTALL)


def _unescape_tag_char(match: re.Match) -> str:
    char = match.group(1)
    return _TAG_ESCAPES.get(char, char)


def parse_irc_tags(tag_string: str) -> dict[str, str]:
    """Parse IRC tags string into a dictionary.

    Tags format: @key1=value1;key2=value2;...
    Entries without "=" are dropped.
    """
    tags: dict[str, str] = {}
    if not tag_string:
        return tags

    # Remove leading '@' if present
    if tag_string.startswith("@"):
        tag_string = tag_string[1:]

    for pair in tag_string.split(";"):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        if not key:
            continue
        tags[key] = _TAG_ESCAPE_RE.sub(_unescape_tag_char, value)

    return tags


def parse_irc_message(raw: str) -> dict:
    """Parse a raw IRC message into components.

    Returns dict with keys: tags, prefix, command, params, trailing
    """
    result: dict = {"tags": {}, "prefix": "", "command": "", "params": [], "trailing": ""}

    pos = 0

    # Parse tags
    if raw.startswith("@"):
        space_idx = raw.find(" ")
        if space_idx < 0:
            return result
        result["tags"] = parse_irc_tags(raw[:space_idx])
        pos = space_idx + 1

    if pos >= len(raw):
        return result

    # Parse prefix
    if raw[pos] == ":":
        space_idx = raw.find(" ", pos)
        if space_idx < 0:
            return result
        result["prefix"] = raw[pos + 1 : space_idx]
        pos = space_idx + 1

    # Parse command and params
    trailing_idx = raw.find(" :", pos)
    if trailing_idx >= 0:
        result["trailing"] = raw[trailing_idx + 2 :]
        remaining = raw[pos:trailing_idx]
    else:
        remaining = raw[pos:]

    parts = remaining.split(" ")
    result["command"] = parts[0]
    result["params"] = parts[1:] if len(parts) > 1 else []

    return result


def parse_badges(badges_tag: str) -> tuple[tuple[str, str], ...]:
    """Parse Twitch badges from IRC tags.

    Format: badge_name/version,badge_name/version
    Entries that do not split into exactly two parts are skipped.
    """
    if not badges_tag:
        return ()

    badges: list[tuple[str, str]] = []
    for badge_str in badges_tag.split(","):
        parts = badge_str.split("/")
        if len(parts) == 2 and all(parts):
            badges.append((parts[0], parts[1]))
    return tuple(badges)


def parse_privmsg(raw: str) -> ChatMessage | None:
    """Turn a PRIVMSG line into a ChatMessage.

    Returns None for any other command or when the line has no
    nick!user@host prefix.
    """
    parsed = parse_irc_message(raw)
    if parsed["command"] != "PRIVMSG":
        return None

    prefix = parsed["prefix"]
    if "!" not in prefix:
        return None
    username = prefix.split("!", 1)[0]
    if not username:
        return None

    tags = parsed["tags"]
    color = tags.get("color", "")

    timestamp = datetime.now(timezone.utc)
    tmi_sent = tags.get("tmi-sent-ts", "")
    if tmi_sent:
        try:
            timestamp = datetime.fromtimestamp(int(tmi_sent) / 1000, tz=timezone.utc)
        except (ValueError, OSError):
            pass

    return ChatMessage(
        id=tags.get("id") or new_message_id(),
        sender=tags.get("display-name") or username,
        text=parsed["trailing"],
        badges=parse_badges(tags.get("badges", "")),
        color=color_from_hex(color) if color else None,
        timestamp=timestamp,
    )


class LineBuffer:
    """Reassembles CRLF-terminated IRC lines from arbitrary byte chunks."""

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, data: bytes) -> list[str]:
        """Add a chunk and return every line it completed."""
        self._pending += data
        *complete, self._pending = self._pending.split(b"\n")
        lines = []
        for raw in complete:
            line = raw.rstrip(b"\r").decode("utf-8", errors="replace")
            if line:
                lines.append(line)
        return lines

    @property
    def pending(self) -> bytes:
        return self._pending


class TwitchIrcConnection(BaseChatConnection):
    """Twitch IRC chat connection over a TLS socket.

    Authenticates with the configured token (or anonymously), joins the
    channel and emits every PRIVMSG as a ChatMessage. The connection ends
    by raising or emitting `error`; reconnecting is the owner's job.
    """

    def __init__(self, settings: TwitchSettings, generation: int = 0, parent=None):
        super().__init__(generation, parent)
        self.settings = settings
        self._channel = settings.channel.lower().lstrip("#")
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def channel(self) -> str:
        return self._channel

    async def run(self) -> None:
        """Connect, log in and read until the server closes or we are cancelled."""
        self._should_stop = False
        try:
            await self._open()
            await self._send_credentials()
            self._set_connected()
            await self._read_loop()
            if not self._should_stop:
                self._emit_error("Connection closed by server")
        except (OSError, asyncio.IncompleteReadError) as e:
            if not self._should_stop:
                self._emit_error(f"Connection failed: {e}")
        finally:
            await self._cleanup()
            self._set_disconnected()

    async def _open(self) -> None:
        logger.info(f"Twitch IRC: connecting to {TWITCH_IRC_HOST}:{TWITCH_IRC_TLS_PORT}")
        self._reader, self._writer = await asyncio.open_connection(
            TWITCH_IRC_HOST, TWITCH_IRC_TLS_PORT, ssl=True
        )

    @property
    def is_anonymous(self) -> bool:
        return not (self.settings.nick and self.settings.irc_password)

    async def _send_credentials(self) -> None:
        """Request capabilities, authenticate and join the channel."""
        for cap in IRC_CAPS:
            await self._send(f"CAP REQ :{cap}")

        if self.is_anonymous:
            nick = f"justinfan{int(time.time()) % 100000}"
        else:
            nick = self.settings.nick.lower()
            await self._send(f"PASS {self.settings.irc_password}")
        logger.info(f"Twitch IRC: connecting as {nick} to #{self._channel}")
        await self._send(f"NICK {nick}")
        await self._send(f"JOIN #{self._channel}")

    async def _send(self, line: str) -> None:
        if self._writer is None or self._writer.is_closing():
            return
        self._writer.write(f"{line}\r\n".encode("utf-8"))
        await self._writer.drain()

    async def iter_lines(self) -> AsyncIterator[str]:
        """Yield complete IRC lines until the server closes the stream."""
        buffer = LineBuffer()
        while self._reader is not None and not self._should_stop:
            chunk = await self._reader.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                yield line

    async def _read_loop(self) -> None:
        """Main read loop for incoming IRC lines."""
        line_count = 0
        async for line in self.iter_lines():
            line_count += 1
            if line_count <= 3:
                logger.info(f"Twitch IRC raw [{line_count}]: {line[:200]}")
            await self._handle_line(line)

    async def _handle_line(self, line: str) -> None:
        """Handle a single IRC line."""
        # Handle PING
        if line.startswith("PING"):
            await self._send(f"PONG {line[5:]}")
            return

        try:
            message = parse_privmsg(line)
        except (ValueError, IndexError) as e:
            logger.debug(f"Skipping malformed IRC line ({e}): {line[:200]}")
            return
        if message is not None:
            self._emit_messages([message])
            return

        parsed = parse_irc_message(line)
        if parsed["command"] == "NOTICE":
            logger.warning(f"Twitch IRC notice: {parsed['trailing']}")
        elif parsed["command"] == "RECONNECT":
            # Server is about to restart; treat as a dropped connection
            logger.info("Twitch IRC: server requested reconnect")
            raise ConnectionResetError("Server requested reconnect")

    async def _cleanup(self) -> None:
        """Close the socket."""
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is not None and not writer.is_closing():
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

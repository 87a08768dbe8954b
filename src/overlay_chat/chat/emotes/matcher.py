"""Split chat text into text runs and emote parts."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..models import EmotePart, MessagePart, TextPart

if TYPE_CHECKING:
    from .resolver import EmoteResolver


def parse_message_parts(text: str, resolver: EmoteResolver) -> list[MessagePart]:
    """Return message parts for text, merging consecutive plain words.

    Tokens are whitespace separated. Plain words are buffered and flushed as a
    single space-joined TextPart whenever an emote or the end of input is hit.
    """
    parts: list[MessagePart] = []
    pending: list[str] = []

    def flush() -> None:
        if pending:
            parts.append(TextPart(" ".join(pending)))
            pending.clear()

    for token in text.split():
        emote = resolver.resolve(token)
        if emote is None:
            pending.append(token)
            continue
        flush()
        parts.append(EmotePart(name=token, url=emote.url, animated=emote.animated))

    flush()
    return parts

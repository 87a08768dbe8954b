"""Priority-ordered emote namespaces."""

from collections.abc import Mapping

from ..models import EmoteRef

# Namespace keys, in resolution priority order
TWITCH_GLOBAL = "twitch_global"
SEVENTV_CHANNEL = "7tv_channel"
SEVENTV_GLOBAL = "7tv_global"
BTTV_CHANNEL = "bttv_channel"
BTTV_GLOBAL = "bttv_global"

NAMESPACE_PRIORITY: tuple[str, ...] = (
    TWITCH_GLOBAL,
    SEVENTV_CHANNEL,
    SEVENTV_GLOBAL,
    BTTV_CHANNEL,
    BTTV_GLOBAL,
)


class EmoteResolver:
    """Holds one emote map per provider namespace and resolves word tokens.

    Resolution walks NAMESPACE_PRIORITY and stops at the first hit.
    """

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, EmoteRef]] = {
            name: {} for name in NAMESPACE_PRIORITY
        }

    def set_namespace(self, namespace: str, emotes: Mapping[str, EmoteRef]) -> None:
        """Replace a namespace wholesale."""
        if namespace not in self._namespaces:
            raise KeyError(f"Unknown emote namespace: {namespace}")
        self._namespaces[namespace] = dict(emotes)

    def namespace(self, namespace: str) -> dict[str, EmoteRef]:
        return dict(self._namespaces[namespace])

    def counts(self) -> dict[str, int]:
        return {name: len(emotes) for name, emotes in self._namespaces.items()}

    def resolve(self, token: str) -> EmoteRef | None:
        for name in NAMESPACE_PRIORITY:
            emote = self._namespaces[name].get(token)
            if emote is not None:
                return emote
        return None

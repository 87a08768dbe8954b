"""Badge catalog: badge set -> version -> image URL."""

import logging
from collections.abc import Iterable, Mapping

from .models import BadgeDisplay

logger = logging.getLogger(__name__)


def parse_badge_sets(data: dict | None) -> dict[str, dict[str, str]]:
    """Transform a Helix `chat/badges` response into a nested mapping.

    Versions without an image URL are skipped, and so are sets left empty.
    """
    badge_sets: dict[str, dict[str, str]] = {}
    if not isinstance(data, dict):
        return badge_sets

    for badge_set in data.get("data", []):
        set_id = badge_set.get("set_id", "")
        if not set_id:
            continue
        versions: dict[str, str] = {}
        for version in badge_set.get("versions", []):
            vid = version.get("id", "")
            url = version.get("image_url_1x") or version.get("image_url_2x") or ""
            if vid and url:
                versions[vid] = url
        if versions:
            badge_sets[set_id] = versions

    return badge_sets


class BadgeCatalog:
    """Read-only two-level badge mapping.

    Catalogs are never mutated in place; `merged` returns a new catalog so
    the state container can swap it wholesale.
    """

    def __init__(self, badge_sets: Mapping[str, Mapping[str, str]] | None = None):
        self._sets: dict[str, dict[str, str]] = {
            set_id: dict(versions) for set_id, versions in (badge_sets or {}).items()
        }

    def __len__(self) -> int:
        return len(self._sets)

    def __contains__(self, set_id: object) -> bool:
        return set_id in self._sets

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BadgeCatalog):
            return NotImplemented
        return self._sets == other._sets

    def __repr__(self) -> str:
        return f"BadgeCatalog({len(self._sets)} sets)"

    def versions(self, set_id: str) -> dict[str, str]:
        """Versions known for a badge set (copy)."""
        return dict(self._sets.get(set_id, {}))

    def url_for(self, set_id: str, version: str) -> str | None:
        """Image URL for a (set, version) pair, or None when unknown."""
        return self._sets.get(set_id, {}).get(version)

    def merged(self, other: "BadgeCatalog") -> "BadgeCatalog":
        """Return a catalog where `other`'s versions override ours per set."""
        combined = {set_id: dict(versions) for set_id, versions in self._sets.items()}
        for set_id, versions in other._sets.items():
            combined.setdefault(set_id, {}).update(versions)
        return BadgeCatalog(combined)

    def resolve(self, badges: Iterable[tuple[str, str]]) -> tuple[BadgeDisplay, ...]:
        """Resolve badge pairs into display records, keeping order."""
        return tuple(
            BadgeDisplay(set_id=set_id, version=version, url=self.url_for(set_id, version))
            for set_id, version in badges
        )

"""Hex color parsing for IRC `color` tags."""

import string

from .models import NEUTRAL_COLOR, Rgb

_HEX_DIGITS = frozenset(string.hexdigits)


def color_from_hex(hex_color: str) -> Rgb:
    """Convert `#RGB` / `#RRGGBB` (leading `#` optional) to an Rgb triple.

    Three-digit colors are expanded by doubling each digit. Anything that is
    not 3 or 6 hex digits yields NEUTRAL_COLOR.
    """
    value = (hex_color or "").strip("#").upper()
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if len(value) != 6 or not all(ch in _HEX_DIGITS for ch in value):
        return NEUTRAL_COLOR

    rgb = int(value, 16)
    return Rgb((rgb >> 16) & 0xFF, (rgb >> 8) & 0xFF, rgb & 0xFF)

"""Deterministic username colours for platforms that omit one."""

from __future__ import annotations

from typing import List, Tuple

DEFAULT_PALETTE: Tuple[str, ...] = (
    "#FF0000",  # Red
    "#0000FF",  # Blue
    "#00FF00",  # Green
    "#B22222",  # FireBrick
    "#FF7F50",  # Coral
    "#9ACD32",  # YellowGreen
    "#FF4500",  # OrangeRed
    "#2E8B57",  # SeaGreen
    "#DAA520",  # GoldenRod
    "#D2691E",  # Chocolate
    "#5F9EA0",  # CadetBlue
    "#1E90FF",  # DodgerBlue
    "#FF69B4",  # HotPink
    "#8A2BE2",  # BlueViolet
    "#00FF7F",  # SpringGreen
)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_units(text: str) -> List[int]:
    encoded = text.encode("utf-16-le")
    return [
        int.from_bytes(encoded[i:i + 2], "little")
        for i in range(0, len(encoded), 2)
    ]


def username_hash(username: str) -> int:
    """
    `s[i] + (hash << 5) - hash` over UTF-16 code units.

    The shift wraps to 32 bits; the subtraction does not. This keeps the
    result identical to browser-side overlays hashing the same name.
    """
    value = 0
    for unit in _utf16_units(username or ""):
        value = unit + (_to_int32(_to_int32(value) << 5) - value)
    return value


def color_for(username: str) -> str:
    return DEFAULT_PALETTE[abs(username_hash(username)) % len(DEFAULT_PALETTE)]


__all__ = ["DEFAULT_PALETTE", "color_for", "username_hash"]

"""
Participant color palette for the convoy map.

Every participant is drawn in one of a fixed, ordered palette of ten
colors. The palette order matters: when a requested color is already in
use, the first free palette entry is handed out instead.
"""

from typing import Iterable, List, Optional, Tuple


# (display name, hex color)
CAR_COLORS: List[Tuple[str, str]] = [
    ("Neon Blue", "#3b82f6"),
    ("Neon Green", "#10b981"),
    ("Hot Pink", "#ec4899"),
    ("Amber", "#f59e0b"),
    ("Purple", "#a855f7"),
    ("Red", "#ef4444"),
    ("Cyan", "#06b6d4"),
    ("Lime", "#84cc16"),
    ("Orange", "#f97316"),
    ("Rose", "#f43f5e"),
]

PALETTE: List[str] = [hex_color for _, hex_color in CAR_COLORS]
DEFAULT_COLOR = PALETTE[0]


def _normalize(hex_color: str) -> str:
    return hex_color.strip().lower()


def color_name(hex_color: str) -> Optional[str]:
    """Return the palette name for a hex color, or None if it is not in the palette."""
    wanted = _normalize(hex_color)
    for name, value in CAR_COLORS:
        if value == wanted:
            return name
    return None


def assign_color(requested: str, taken: Iterable[str]) -> str:
    """
    Pick the color a joining participant will use.

    Keeps the requested color when nobody in the session holds it,
    otherwise returns the first palette color not in the taken set.
    If the whole palette is taken the requested color is kept.

    This reads a snapshot of the session, so two participants joining at
    the same moment can still end up sharing a color.

    Args:
        requested: Hex color the participant asked for
        taken: Hex colors already held by participants in the session

    Returns:
        Hex color string (lower-case)
    """
    taken_set = {_normalize(c) for c in taken if c}
    wanted = _normalize(requested)
    if wanted not in taken_set:
        return wanted

    for hex_color in PALETTE:
        if hex_color not in taken_set:
            return hex_color
    return wanted

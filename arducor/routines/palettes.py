"""
Palette Module.

This module defines the color types used by the routines and resolves
color group identifiers into palettes.

It is responsible for:
- the Color value type and the fixed-capacity Palette snapshot
- the user-programmable custom color array
- the bundled preset color groups
- generating random palettes for the "all" group

It is not responsible for:
- deciding when a palette is re-resolved (the routine engine does that)
- drawing palettes into LED buffers
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

# Configure logging
logger = logging.getLogger(__name__)

# Number of colors a palette can hold
PALETTE_CAPACITY = 10

# Number of custom colors active after a reset
DEFAULT_CUSTOM_COUNT = 2


class Color(NamedTuple):
    """An 8-bit RGB color."""
    r: int
    g: int
    b: int

    @classmethod
    def checked(cls, r: int, g: int, b: int) -> 'Color':
        """Build a color, raising ValueError if a channel is outside 0-255."""
        for channel in (r, g, b):
            if not 0 <= int(channel) <= 255:
                raise ValueError(f"Color channel out of range: {channel}")
        return cls(int(r), int(g), int(b))


BLACK = Color(0, 0, 0)


class ColorGroup(IntEnum):
    """Identifiers of the color groups multi color routines draw from."""
    CUSTOM = 0
    WATER = 1
    FROZEN = 2
    SNOW = 3
    COOL = 4
    WARM = 5
    FIRE = 6
    EVIL = 7
    CORROSIVE = 8
    POISON = 9
    ROSE = 10
    PINK_GREEN = 11
    RED_WHITE_BLUE = 12
    RGB = 13
    CMY = 14
    SIX_COLOR = 15
    SEVEN_COLOR = 16
    ALL = 17


COLOR_GROUP_MAX = max(ColorGroup) + 1

PRESET_COLORS = {
    ColorGroup.WATER: (
        Color(0, 0, 255), Color(0, 25, 225), Color(0, 0, 127),
        Color(0, 127, 127), Color(120, 120, 255),
    ),
    ColorGroup.FROZEN: (
        Color(0, 127, 255), Color(0, 127, 127), Color(200, 200, 255),
        Color(120, 120, 255), Color(160, 32, 240), Color(0, 255, 255),
    ),
    ColorGroup.SNOW: (
        Color(255, 255, 255), Color(235, 235, 235), Color(200, 200, 255),
        Color(0, 127, 255), Color(0, 200, 200),
    ),
    ColorGroup.COOL: (
        Color(0, 0, 255), Color(0, 255, 0), Color(127, 0, 255),
        Color(0, 127, 255), Color(0, 255, 127),
    ),
    ColorGroup.WARM: (
        Color(255, 255, 0), Color(255, 0, 0), Color(255, 127, 0),
        Color(255, 200, 0), Color(200, 50, 0),
    ),
    ColorGroup.FIRE: (
        Color(255, 127, 0), Color(255, 60, 0), Color(255, 200, 0),
        Color(255, 0, 0), Color(180, 40, 0), Color(255, 100, 0),
    ),
    ColorGroup.EVIL: (
        Color(255, 0, 0), Color(200, 0, 0), Color(127, 0, 0), Color(20, 0, 0),
        Color(60, 0, 60), Color(255, 127, 0), Color(100, 0, 30),
    ),
    ColorGroup.CORROSIVE: (
        Color(0, 255, 0), Color(0, 200, 0), Color(60, 255, 60),
        Color(255, 255, 255), Color(127, 255, 0),
    ),
    ColorGroup.POISON: (
        Color(127, 0, 255), Color(60, 0, 160), Color(200, 0, 255),
        Color(0, 255, 0), Color(40, 0, 80),
    ),
    ColorGroup.ROSE: (
        Color(255, 0, 127), Color(255, 100, 180), Color(255, 0, 0),
        Color(255, 255, 255), Color(255, 160, 200),
    ),
    ColorGroup.PINK_GREEN: (
        Color(255, 20, 147), Color(255, 0, 127), Color(0, 255, 0), Color(60, 255, 60),
    ),
    ColorGroup.RED_WHITE_BLUE: (
        Color(255, 0, 0), Color(255, 255, 255), Color(0, 0, 255),
    ),
    ColorGroup.RGB: (
        Color(255, 0, 0), Color(0, 255, 0), Color(0, 0, 255),
    ),
    ColorGroup.CMY: (
        Color(0, 255, 255), Color(255, 0, 255), Color(255, 255, 0),
    ),
    ColorGroup.SIX_COLOR: (
        Color(255, 0, 0), Color(255, 255, 0), Color(0, 255, 0),
        Color(0, 255, 255), Color(0, 0, 255), Color(255, 0, 255),
    ),
    ColorGroup.SEVEN_COLOR: (
        Color(255, 0, 0), Color(255, 255, 0), Color(0, 255, 0),
        Color(0, 255, 255), Color(0, 0, 255), Color(255, 0, 255),
        Color(255, 255, 255),
    ),
}

# green, teal, blue, light green, purple
DEFAULT_CUSTOM_COLORS = (
    Color(0, 255, 0), Color(125, 0, 255), Color(0, 0, 255),
    Color(40, 127, 40), Color(60, 0, 160),
) * 2


@dataclass(frozen=True)
class Palette:
    """
    An immutable snapshot of the colors a multi color routine uses.

    Only the first ``count`` colors are in use.
    """
    colors: Tuple[Color, ...]
    count: int

    def __post_init__(self):
        if len(self.colors) > PALETTE_CAPACITY:
            raise ValueError(f"Palette holds at most {PALETTE_CAPACITY} colors, got {len(self.colors)}")
        if not 0 < self.count <= len(self.colors):
            raise ValueError(f"Palette count {self.count} outside 1-{len(self.colors)}")

    def __len__(self) -> int:
        return self.count

    def __getitem__(self, index: int) -> Color:
        if not 0 <= index < self.count:
            raise IndexError(f"Palette index {index} outside 0-{self.count - 1}")
        return self.colors[index]

    @property
    def active(self) -> Tuple[Color, ...]:
        return self.colors[:self.count]

    def as_array(self) -> np.ndarray:
        """Return the active colors as a (count, 3) uint8 array."""
        return np.array(self.active, dtype=np.uint8).reshape(self.count, 3)


class CustomPalette:
    """User settable color storage backing the custom color group."""

    def __init__(self, capacity: int = PALETTE_CAPACITY):
        self.capacity = capacity
        self._colors: List[Color] = []
        self.count = DEFAULT_CUSTOM_COUNT
        self.reset()

    def reset(self) -> None:
        """Restore the default colors and count."""
        self._colors = list(DEFAULT_CUSTOM_COLORS[:self.capacity])
        self.count = min(DEFAULT_CUSTOM_COUNT, self.capacity)

    def color(self, index: int) -> Color:
        """Return the color at index, or black if the index is out of range."""
        if 0 <= index < self.capacity:
            return self._colors[index]
        return BLACK

    def set_color(self, index: int, color: Color) -> bool:
        """
        Store a color in one slot.

        Args:
            index: Slot to change, must be less than the capacity
            color: New color for the slot

        Returns:
            True if the slot exists and was written
        """
        if not 0 <= index < self.capacity:
            logger.debug(f"Ignoring custom color for out of range index {index}")
            return False
        self._colors[index] = Color(*color)
        return True

    def set_count(self, count: int) -> bool:
        """Set how many slots are in use; values above the capacity use every slot."""
        if count <= 0:
            return False
        self.count = min(count, self.capacity)
        return True

    @property
    def colors(self) -> Tuple[Color, ...]:
        return tuple(self._colors)

    def snapshot(self) -> Palette:
        return Palette(tuple(self._colors), self.count)


class PaletteResolver:
    """Maps a color group identifier to a palette."""

    def __init__(self, rng: Optional[np.random.Generator] = None, capacity: int = PALETTE_CAPACITY):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.capacity = capacity

    @staticmethod
    def clamp_group(group: int) -> ColorGroup:
        """Clamp any identifier onto the nearest valid color group."""
        group = int(group)
        if group < 0:
            return ColorGroup(0)
        if group >= COLOR_GROUP_MAX:
            return ColorGroup(COLOR_GROUP_MAX - 1)
        return ColorGroup(group)

    def random_colors(self, count: int) -> List[Color]:
        """Draw count uniformly random colors."""
        values = self.rng.integers(0, 256, size=(count, 3))
        return [Color(int(r), int(g), int(b)) for r, g, b in values]

    def resolve(self, group: int, custom: CustomPalette) -> Palette:
        """
        Resolve a color group into a palette snapshot.

        Args:
            group: Color group identifier, clamped if out of range
            custom: Storage used for the custom group

        Returns:
            The palette for the group. Random palettes are drawn fresh on each call.
        """
        group = self.clamp_group(group)
        if group == ColorGroup.CUSTOM:
            return custom.snapshot()
        if group == ColorGroup.ALL:
            return Palette(tuple(self.random_colors(self.capacity)), self.capacity)
        colors = PRESET_COLORS[group]
        return Palette(tuple(colors), len(colors))


def palette_names() -> Sequence[str]:
    """Return the lower case names of every color group, ordered by identifier."""
    return [group.name.lower() for group in ColorGroup]

"""
Routine Engine Module.

This module owns the animation state of one LED device and synthesizes its
RGB buffer on every tick.

It is responsible for:
- tracking the selected routine, color group and tunable settings
- resetting transient animation phase whenever the routine or group changes
- rendering each routine into a full-frame buffer
- the optional brightness post-process

It is not responsible for:
- deciding when a tick happens (the device multiplexer does that)
- parsing commands
- pushing buffers to LED hardware
"""

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from .palettes import (
    BLACK,
    Color,
    ColorGroup,
    CustomPalette,
    Palette,
    PaletteResolver,
)

# Configure logging
logger = logging.getLogger(__name__)

# Defaults restored by reset_to_defaults()
DEFAULT_MAIN_COLOR = Color(100, 25, 0)
DEFAULT_BRIGHTNESS = 50
DEFAULT_FADE_SPEED = 25
DEFAULT_BLINK_SPEED = 3
DEFAULT_BAR_SIZE = 2
DEFAULT_GLIMMER_PERCENT = 20

# Tunables are single bytes on the wire
MAX_TUNABLE = 255
MAX_BRIGHTNESS = 100

# Sine fade maps the fade ratio onto roughly -pi/2 .. 3pi/2
SINE_FADE_SCALE = 6.28
SINE_FADE_SHIFT = 1.67


class Routine(IntEnum):
    """Selectable animation routines, numbered as they appear on the wire."""
    SINGLE_SOLID = 0
    SINGLE_BLINK = 1
    SINGLE_WAVE = 2
    SINGLE_GLIMMER = 3
    SINGLE_LINEAR_FADE = 4
    SINGLE_SINE_FADE = 5
    SINGLE_SAWTOOTH_FADE_IN = 6
    SINGLE_SAWTOOTH_FADE_OUT = 7
    MULTI_GLIMMER = 8
    MULTI_FADE = 9
    MULTI_RANDOM_SOLID = 10
    MULTI_RANDOM_INDIVIDUAL = 11
    MULTI_BARS_SOLID = 12
    MULTI_BARS_MOVING = 13

    @property
    def is_multi(self) -> bool:
        return self >= Routine.MULTI_GLIMMER


ROUTINE_MAX = max(Routine) + 1

# Routines whose setup depends on the bar size
BAR_ROUTINES = frozenset({Routine.SINGLE_WAVE, Routine.MULTI_BARS_SOLID, Routine.MULTI_BARS_MOVING})


@dataclass(frozen=True)
class SettingResult:
    """Outcome of a setter: whether the value was accepted and whether it differed."""
    applied: bool
    changed: bool = False
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.applied


def applied(changed: bool = True) -> SettingResult:
    return SettingResult(True, changed)


def rejected(reason: str) -> SettingResult:
    return SettingResult(False, False, reason)


@dataclass
class SinglePhase:
    """Transient state of the single color routines."""
    counter: int = 0
    rising: bool = True
    lit: bool = False
    pattern: Optional[np.ndarray] = None
    levels: int = 1
    offset: int = 0
    divisors: Optional[np.ndarray] = None


@dataclass
class MultiPhase:
    """Transient state of the multi color routines."""
    counter: int = 0
    index: int = 0
    start_next_fade: bool = True
    current: Color = BLACK
    goal: Color = BLACK
    pattern: Optional[np.ndarray] = None
    offset: int = 0
    choices: Optional[np.ndarray] = None
    divisors: Optional[np.ndarray] = None


Phase = Union[SinglePhase, MultiPhase]


def moving_pattern(color_count: int, group_size: int, led_count: int, start: int = 0) -> np.ndarray:
    """
    Build the smallest looping pattern of color indices for bar routines.

    Args:
        color_count: Number of distinct values in the pattern
        group_size: How many consecutive LEDs share a value
        led_count: LEDs on the device; a loop longer than this collapses groups to 1
        start: Value the pattern wraps back to, 0 if not below color_count

    Returns:
        Array of length group_size * color_count
    """
    color_count = max(1, color_count)
    if group_size * color_count > led_count:
        group_size = 1
    if start >= color_count:
        start = 0

    values = []
    value = start
    run = 0
    for _ in range(group_size * color_count):
        values.append(value)
        run += 1
        if run == group_size:
            run = 0
            value += 1
            if value == color_count:
                value = start
    return np.array(values, dtype=np.int64)


class RoutineEngine:
    """
    Animation state machine for a single LED device.

    The engine writes each frame into a scratch buffer and swaps it into place,
    so the array returned by ``buffer`` always holds a complete frame.
    """

    def __init__(self, led_count: int,
                 rng: Optional[np.random.Generator] = None,
                 resolver: Optional[PaletteResolver] = None,
                 avoid_repeats: bool = False):
        """
        Initialize the engine with default settings.

        Args:
            led_count: Number of LEDs driven by this engine, must be positive
            rng: Random generator used by the stochastic routines
            resolver: Palette resolver, created from rng if omitted
            avoid_repeats: Random palette picks never repeat the previous index
                           when the palette has more than 2 colors
        """
        if led_count <= 0:
            raise ValueError(f"LED count must be positive, got {led_count}")

        self.led_count = int(led_count)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.resolver = resolver or PaletteResolver(self.rng)
        self.avoid_repeats = avoid_repeats
        self.custom = CustomPalette()

        # Raw frames before brightness, plus the double buffered output
        self._raw = np.zeros((self.led_count, 3), dtype=np.uint8)
        self._scratch = np.zeros_like(self._raw)
        self._front = np.zeros_like(self._raw)
        self._back = np.zeros_like(self._raw)

        self._renderers: Dict[Routine, Callable[[np.ndarray, bool], None]] = {
            Routine.SINGLE_SOLID: self._single_solid,
            Routine.SINGLE_BLINK: self._single_blink,
            Routine.SINGLE_WAVE: self._single_wave,
            Routine.SINGLE_GLIMMER: self._single_glimmer,
            Routine.SINGLE_LINEAR_FADE: self._single_linear_fade,
            Routine.SINGLE_SINE_FADE: self._single_sine_fade,
            Routine.SINGLE_SAWTOOTH_FADE_IN: self._single_sawtooth_fade_in,
            Routine.SINGLE_SAWTOOTH_FADE_OUT: self._single_sawtooth_fade_out,
            Routine.MULTI_GLIMMER: self._multi_glimmer,
            Routine.MULTI_FADE: self._multi_fade,
            Routine.MULTI_RANDOM_SOLID: self._multi_random_solid,
            Routine.MULTI_RANDOM_INDIVIDUAL: self._multi_random_individual,
            Routine.MULTI_BARS_SOLID: self._multi_bars_solid,
            Routine.MULTI_BARS_MOVING: self._multi_bars_moving,
        }

        self.reset_to_defaults()
        logger.debug(f"Routine engine initialized with {self.led_count} LEDs")

    def reset_to_defaults(self) -> None:
        """Restore every setting, the custom colors and the routine to their defaults."""
        self.main_color = DEFAULT_MAIN_COLOR
        self.brightness = DEFAULT_BRIGHTNESS
        self.fade_speed = DEFAULT_FADE_SPEED
        self.blink_speed = DEFAULT_BLINK_SPEED
        self.bar_size = DEFAULT_BAR_SIZE
        self.glimmer_percent = DEFAULT_GLIMMER_PERCENT
        self.custom.reset()
        self.is_on = True

        self.routine = Routine.SINGLE_GLIMMER
        self.group = ColorGroup.CUSTOM
        self._needs_setup = False
        self._setup()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, routine: int, group: int) -> bool:
        """
        Activate a routine and color group.

        Transient phase resets when either differs from the active pair or when
        a setting change requested a fresh setup. Reselecting the active pair
        leaves the animation running undisturbed.

        Returns:
            True if the phase was reset
        """
        routine = Routine(routine)
        group = self.resolver.clamp_group(group)
        if routine == self.routine and group == self.group and not self._needs_setup:
            return False

        self.routine = routine
        self.group = group
        self._needs_setup = False
        self._setup()
        logger.debug(f"Selected routine {routine.name} with group {group.name}")
        return True

    def _setup(self) -> None:
        self.palette: Palette = self.resolver.resolve(self.group, self.custom)
        self._palette_array = self.palette.as_array()
        self.phase: Phase = MultiPhase() if self.routine.is_multi else SinglePhase()
        # a new phase has no frame to redraw until it steps once
        self._fresh = True

        if self.routine == Routine.SINGLE_WAVE:
            levels = max(1, self.led_count // (2 * self.bar_size))
            self.phase.levels = levels
            self.phase.pattern = moving_pattern(levels, self.bar_size, self.led_count, start=1)
        elif self.routine in (Routine.MULTI_BARS_SOLID, Routine.MULTI_BARS_MOVING):
            self.phase.pattern = moving_pattern(self.palette.count, self.bar_size, self.led_count)
        elif self.routine == Routine.SINGLE_SAWTOOTH_FADE_OUT:
            self.phase.counter = self.fade_speed

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_main_color(self, color: Color) -> SettingResult:
        try:
            color = Color.checked(*color)
        except (TypeError, ValueError) as e:
            return rejected(str(e))
        changed = color != self.main_color
        self.main_color = color
        return applied(changed)

    def set_custom_color(self, index: int, color: Color) -> SettingResult:
        """Set one slot of the custom palette."""
        try:
            color = Color.checked(*color)
        except (TypeError, ValueError) as e:
            return rejected(str(e))
        previous = self.custom.color(index)
        if not self.custom.set_color(index, color):
            return rejected(f"custom color index {index} outside 0-{self.custom.capacity - 1}")
        changed = previous != color
        if changed and self._uses_custom_palette() and index < self.custom.count:
            self._needs_setup = True
        return applied(changed)

    def set_custom_color_count(self, count: int) -> SettingResult:
        """Set how many custom colors are used; values above the capacity use every slot."""
        previous = self.custom.count
        if not self.custom.set_count(count):
            return rejected("custom color count must be positive")
        changed = previous != self.custom.count
        if changed and self._uses_custom_palette():
            self._needs_setup = True
        return applied(changed)

    def _uses_custom_palette(self) -> bool:
        return self.routine.is_multi and self.group == ColorGroup.CUSTOM

    def set_brightness(self, brightness: int) -> SettingResult:
        if not 0 <= brightness <= MAX_BRIGHTNESS:
            return rejected(f"brightness {brightness} outside 0-{MAX_BRIGHTNESS}")
        changed = brightness != self.brightness
        self.brightness = int(brightness)
        return applied(changed)

    def set_bar_size(self, bar_size: int) -> SettingResult:
        if bar_size <= 0 or bar_size >= self.led_count or bar_size > MAX_TUNABLE:
            return rejected(f"bar size {bar_size} outside 1-{min(MAX_TUNABLE, self.led_count - 1)}")
        changed = bar_size != self.bar_size
        self.bar_size = int(bar_size)
        if changed and self.routine in BAR_ROUTINES:
            self._needs_setup = True
        return applied(changed)

    def set_fade_speed(self, fade_speed: int) -> SettingResult:
        if not 0 < fade_speed <= MAX_TUNABLE:
            return rejected(f"fade speed {fade_speed} outside 1-{MAX_TUNABLE}")
        changed = fade_speed != self.fade_speed
        self.fade_speed = int(fade_speed)
        return applied(changed)

    def set_blink_speed(self, blink_speed: int) -> SettingResult:
        if not 0 < blink_speed <= MAX_TUNABLE:
            return rejected(f"blink speed {blink_speed} outside 1-{MAX_TUNABLE}")
        changed = blink_speed != self.blink_speed
        self.blink_speed = int(blink_speed)
        return applied(changed)

    def set_glimmer_percent(self, percent: int) -> SettingResult:
        if not 0 <= percent <= 100:
            return rejected(f"glimmer percent {percent} outside 0-100")
        changed = percent != self.glimmer_percent
        self.glimmer_percent = int(percent)
        return applied(changed)

    def turn_on(self) -> bool:
        """Turn the device on. Returns True if it was off."""
        changed = not self.is_on
        self.is_on = True
        return changed

    def turn_off(self) -> bool:
        """Turn the device off and blank the buffer. Returns True if it was on."""
        changed = self.is_on
        self.is_on = False
        self._raw.fill(0)
        self._back.fill(0)
        self._front, self._back = self._back, self._front
        return changed

    # ------------------------------------------------------------------
    # Frame generation
    # ------------------------------------------------------------------

    def tick(self, advance: bool = True) -> None:
        """
        Recompute the whole buffer from the current state.

        Args:
            advance: Step the animation. When False the frame is redrawn from the
                     current phase, which picks up color or brightness changes
                     without moving the animation forward. The first frame
                     after a phase reset always advances.
        """
        if self._needs_setup:
            self.select(self.routine, self.group)

        if self.is_on:
            advance = advance or self._fresh
            self._fresh = False
            self._renderers[self.routine](self._scratch, advance)
        else:
            self._scratch.fill(0)

        self._raw, self._scratch = self._scratch, self._raw
        np.copyto(self._back, self._raw)
        self._front, self._back = self._back, self._front

    def apply_brightness(self) -> None:
        """
        Scale every channel by brightness / 100 with integer arithmetic.

        Repeated calls compound, so call this at most once per frame.
        """
        scaled = (self._front.astype(np.uint16) * self.brightness) // 100
        self._back[:] = scaled.astype(np.uint8)
        self._front, self._back = self._back, self._front

    @property
    def buffer(self) -> np.ndarray:
        """Read only (led_count, 3) view of the last frame, valid until the next tick."""
        view = self._front.view()
        view.flags.writeable = False
        return view

    def colors(self) -> List[Color]:
        return [Color(r, g, b) for r, g, b in self._front.tolist()]

    def pixel(self, index: int) -> Color:
        """Color of one LED, or black if the index is out of range."""
        if 0 <= index < self.led_count:
            r, g, b = self._front[index].tolist()
            return Color(r, g, b)
        return BLACK

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _scaled(self, level: float) -> Color:
        r, g, b = self.main_color
        return Color(int(r * level), int(g * level), int(b * level))

    def _pattern_window(self, phase: Phase, advance: bool) -> np.ndarray:
        # the pattern repeats enough times to cover every LED, read from the offset
        length = len(phase.pattern)
        repeats = self.led_count // length + 1
        window = np.tile(np.roll(phase.pattern, -phase.offset), repeats)[:self.led_count]
        if advance:
            phase.offset = (phase.offset + 1) % length
        return window

    def _glimmer_divisors(self) -> np.ndarray:
        hits = self.rng.integers(0, 100, size=self.led_count) < self.glimmer_percent
        factors = self.rng.integers(2, 6, size=self.led_count)
        return np.where(hits, factors, 1)

    def _choose_index(self, previous: int, count: int) -> int:
        index = int(self.rng.integers(0, count))
        if self.avoid_repeats and count > 2:
            while index == previous:
                index = int(self.rng.integers(0, count))
        return index

    def _fade_channel(self, value: int, goal: int):
        """Move one channel toward its goal. Returns the new value and whether it had to step."""
        difference = abs(goal - value)
        if difference == 0:
            return value, False
        if difference < self.fade_speed:
            return goal, False
        step = self.fade_speed if goal > value else -self.fade_speed
        return value + step, True

    # ------------------------------------------------------------------
    # Single color routines
    # ------------------------------------------------------------------

    def _single_solid(self, out: np.ndarray, advance: bool) -> None:
        out[:] = self.main_color

    def _single_blink(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        if advance:
            if phase.counter % self.blink_speed == 0:
                phase.lit = phase.rising
                phase.rising = not phase.rising
            phase.counter += 1
        out[:] = self.main_color if phase.lit else BLACK

    def _single_wave(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        window = self._pattern_window(phase, advance)
        levels = window / float(phase.levels)
        out[:] = (np.array(self.main_color, dtype=np.float64)[None, :] * levels[:, None]).astype(np.uint8)

    def _single_glimmer(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        if advance or phase.divisors is None:
            phase.divisors = self._glimmer_divisors()
        base = np.array(self.main_color, dtype=np.int64)
        out[:] = (base[None, :] // phase.divisors[:, None]).astype(np.uint8)

    def _single_linear_fade(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        top = self.fade_speed
        phase.counter = min(phase.counter, top)
        if advance:
            phase.counter += 1 if phase.rising else -1
            if phase.counter >= top:
                phase.counter = top
                phase.rising = False
            elif phase.counter <= 0:
                phase.counter = 0
                phase.rising = True
        out[:] = self._scaled(phase.counter / top)

    def _step_sawtooth_in(self, phase: SinglePhase) -> None:
        if phase.rising:
            phase.counter += 1
        else:
            phase.counter = 0
            phase.rising = True
        if phase.counter >= self.fade_speed:
            phase.counter = self.fade_speed
            phase.rising = False

    def _single_sawtooth_fade_in(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        phase.counter = min(phase.counter, self.fade_speed)
        if advance:
            self._step_sawtooth_in(phase)
        out[:] = self._scaled(phase.counter / self.fade_speed)

    def _single_sawtooth_fade_out(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        top = self.fade_speed
        phase.counter = min(phase.counter, top)
        if advance:
            if phase.rising:
                phase.counter -= 1
            else:
                phase.counter = top
                phase.rising = True
            if phase.counter <= 0:
                phase.counter = 0
                phase.rising = False
        out[:] = self._scaled(phase.counter / top)

    def _single_sine_fade(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        phase.counter = min(phase.counter, self.fade_speed)
        # level is taken before the step, spending longer near the extremes
        level = (math.sin((phase.counter / self.fade_speed) * SINE_FADE_SCALE - SINE_FADE_SHIFT) + 1) / 2.0
        if advance:
            self._step_sawtooth_in(phase)
        out[:] = self._scaled(level)

    # ------------------------------------------------------------------
    # Multi color routines
    # ------------------------------------------------------------------

    def _multi_glimmer(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        if advance or phase.choices is None:
            colors = np.tile(self._palette_array[0], (self.led_count, 1))
            switch = self.rng.integers(0, 100, size=self.led_count) < self.glimmer_percent
            picks = self.rng.integers(0, self.palette.count, size=self.led_count)
            colors[switch] = self._palette_array[picks[switch]]
            phase.choices = colors
            phase.divisors = self._glimmer_divisors()
        out[:] = (phase.choices.astype(np.int64) // phase.divisors[:, None]).astype(np.uint8)

    def _multi_fade(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        palette = self.palette
        if advance:
            if phase.start_next_fade:
                phase.start_next_fade = False
                if palette.count > 1:
                    phase.index = (phase.index + 1) % palette.count
                    phase.current = palette[phase.index]
                    phase.goal = palette[(phase.index + 1) % palette.count]
                else:
                    phase.index = 0
                    phase.current = palette[0]
                    phase.goal = palette[0]

            channels = []
            stepped = False
            for value, goal in zip(phase.current, phase.goal):
                value, moved = self._fade_channel(value, goal)
                channels.append(value)
                stepped = stepped or moved
            phase.current = Color(*channels)
            phase.start_next_fade = not stepped
        out[:] = phase.current

    def _multi_random_solid(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        if advance:
            if phase.counter % self.blink_speed == 0:
                if self.group == ColorGroup.ALL:
                    phase.current = self.resolver.random_colors(1)[0]
                else:
                    phase.index = self._choose_index(phase.index, self.palette.count)
                    phase.current = self.palette[phase.index]
            phase.counter += 1
        out[:] = phase.current

    def _multi_random_individual(self, out: np.ndarray, advance: bool) -> None:
        phase = self.phase
        if advance or phase.choices is None:
            count = self.palette.count
            if self.group == ColorGroup.ALL:
                phase.choices = self.rng.integers(0, 256, size=(self.led_count, 3)).astype(np.uint8)
            elif self.avoid_repeats and count > 2:
                picks = []
                previous = phase.index
                for _ in range(self.led_count):
                    previous = self._choose_index(previous, count)
                    picks.append(previous)
                phase.index = previous
                phase.choices = self._palette_array[picks]
            else:
                picks = self.rng.integers(0, count, size=self.led_count)
                phase.choices = self._palette_array[picks]
        out[:] = phase.choices

    def _multi_bars_solid(self, out: np.ndarray, advance: bool) -> None:
        indices = (np.arange(self.led_count) // self.bar_size) % self.palette.count
        out[:] = self._palette_array[indices]

    def _multi_bars_moving(self, out: np.ndarray, advance: bool) -> None:
        window = self._pattern_window(self.phase, advance)
        out[:] = self._palette_array[window]

"""
Light device state module
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from arducor.routines.engine import RoutineEngine

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_SPEED = 100
MAX_SPEED = 200
DEFAULT_IDLE_TIMEOUT_MINUTES = 120
MS_PER_MINUTE = 60 * 1000


def ticks_per_update(speed: int) -> int:
    """
    Number of controller ticks between animation steps.

    Speed 0 stops the animation so only forced updates render. Otherwise
    speed 200 steps every tick and speed 1 every 200th tick.
    """
    if speed <= 0:
        return 0
    return math.ceil(MAX_SPEED / speed)


@dataclass
class LightDevice:
    """One LED array behind a hardware index, with its engine and scheduling state."""
    index: int
    engine: RoutineEngine
    name: str = 'ArduCor'
    light_type: int = 0
    product_type: int = 0
    speed: int = DEFAULT_SPEED
    idle_timeout_minutes: int = DEFAULT_IDLE_TIMEOUT_MINUTES
    last_command_ms: int = 0
    tick_counter: int = 0
    force_update: bool = True
    refresh_pending: bool = False
    reachable: bool = True

    @property
    def ticks_per_update(self) -> int:
        return ticks_per_update(self.speed)

    @property
    def led_count(self) -> int:
        return self.engine.led_count

    def is_due(self) -> bool:
        """True when this tick should advance the animation."""
        if self.force_update:
            return True
        interval = self.ticks_per_update
        return interval > 0 and self.tick_counter % interval == 0

    def restart_cadence(self) -> None:
        """Advance on the next tick and count the cadence from there."""
        self.tick_counter = 0
        self.force_update = True

    def is_timed_out(self, now_ms: int) -> bool:
        if self.idle_timeout_minutes <= 0:
            return False
        return now_ms - self.last_command_ms >= self.idle_timeout_minutes * MS_PER_MINUTE

    def minutes_until_timeout(self, now_ms: int) -> int:
        if self.idle_timeout_minutes <= 0:
            return 0
        remaining = self.idle_timeout_minutes * MS_PER_MINUTE - (now_ms - self.last_command_ms)
        return max(0, math.ceil(remaining / MS_PER_MINUTE))

    def state_values(self, now_ms: int) -> Tuple[int, ...]:
        """Values of a state packet after the header."""
        engine = self.engine
        return (
            self.index,
            int(engine.is_on),
            int(self.reachable),
            *engine.main_color,
            int(engine.routine),
            int(engine.group),
            engine.brightness,
            self.speed,
            self.idle_timeout_minutes,
            self.minutes_until_timeout(now_ms),
        )

    def custom_array_values(self) -> Tuple[int, ...]:
        """Values of a custom array packet after the header."""
        values = [self.index, self.engine.custom.count]
        for color in self.engine.custom.colors:
            values.extend(color)
        return tuple(values)

    def to_dict(self, now_ms: int) -> Dict[str, Any]:
        """Convert state to dictionary for display"""
        engine = self.engine
        return {
            'index': self.index,
            'name': self.name,
            'led_count': engine.led_count,
            'is_on': engine.is_on,
            'reachable': self.reachable,
            'main_color': tuple(engine.main_color),
            'routine': engine.routine.name.lower(),
            'group': engine.group.name.lower(),
            'brightness': engine.brightness,
            'speed': self.speed,
            'idle_timeout_minutes': self.idle_timeout_minutes,
            'minutes_until_timeout': self.minutes_until_timeout(now_ms),
            'custom_count': engine.custom.count,
        }

"""
Protocol Commands Module.

This module defines the packet headers of the light protocol and one immutable
command type per header.

It is responsible for:
- the wire value of every header
- validating the argument list of each header
- turning a command back into its integer values

It is not responsible for:
- splitting frames or checking checksums (the codec does that)
- applying commands to devices
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Dict, Optional, Sequence, Tuple, Type

from arducor.routines.engine import ROUTINE_MAX, Routine
from arducor.routines.palettes import PALETTE_CAPACITY, Color

# Argument limits
MAX_BYTE = 255
MAX_BRIGHTNESS = 100
MAX_SPEED = 200
MAX_IDLE_TIMEOUT_MINUTES = 65535
MAX_PERCENT = 100

# A reset must carry these two values to guard against stray packets
RESET_KEY = (42, 71)

# Routines that carry no tunable in a mode change
ROUTINES_WITHOUT_TUNABLE = frozenset({Routine.SINGLE_SOLID, Routine.MULTI_RANDOM_INDIVIDUAL})

# Routines whose tunable is a percentage rather than a positive byte
PERCENT_TUNABLE_ROUTINES = frozenset({Routine.SINGLE_GLIMMER, Routine.MULTI_GLIMMER})


class PacketHeader(IntEnum):
    """First value of every inbound message."""
    ON_OFF_CHANGE = 0
    MODE_CHANGE = 1
    MAIN_COLOR_CHANGE = 2
    CUSTOM_ARRAY_COLOR_CHANGE = 3
    BRIGHTNESS_CHANGE = 4
    SPEED_CHANGE = 5
    CUSTOM_COLOR_COUNT_CHANGE = 6
    IDLE_TIMEOUT_CHANGE = 7
    STATE_UPDATE_REQUEST = 8
    CUSTOM_ARRAY_UPDATE_REQUEST = 9
    RESET_SETTINGS_TO_DEFAULTS = 10


class PacketError(ValueError):
    """Raised when a message cannot be turned into a command."""


def _expect_count(args: Sequence[int], *counts: int) -> None:
    if len(args) not in counts:
        expected = " or ".join(str(c) for c in counts)
        raise PacketError(f"expected {expected} arguments, got {len(args)}")


def _expect_range(name: str, value: int, low: int, high: int) -> int:
    if not low <= value <= high:
        raise PacketError(f"{name} {value} outside {low}-{high}")
    return value


def _parse_color(args: Sequence[int]) -> Color:
    for channel in args:
        _expect_range("color channel", channel, 0, MAX_BYTE)
    return Color(*args)


@dataclass(frozen=True)
class Command:
    """Base of all commands. ``index`` is the hardware index, 0 for every device."""
    index: int

    header: ClassVar[PacketHeader]

    @classmethod
    def parse(cls, index: int, args: Sequence[int]) -> 'Command':
        _expect_count(args, 0)
        return cls(index)

    def args(self) -> Tuple[int, ...]:
        return ()

    def values(self) -> Tuple[int, ...]:
        """All integer values of the message, header first."""
        return (int(self.header), self.index) + tuple(int(v) for v in self.args())


@dataclass(frozen=True)
class OnOffChange(Command):
    on: bool
    header: ClassVar[PacketHeader] = PacketHeader.ON_OFF_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 1)
        return cls(index, bool(_expect_range("on/off", args[0], 0, 1)))

    def args(self):
        return (int(self.on),)


@dataclass(frozen=True)
class ModeChange(Command):
    routine: Routine
    palette: int
    tunable: Optional[int] = None
    header: ClassVar[PacketHeader] = PacketHeader.MODE_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 2, 3)
        routine = Routine(_expect_range("routine", args[0], 0, ROUTINE_MAX - 1))
        palette = _expect_range("palette", args[1], 0, MAX_BYTE)
        if len(args) == 2:
            return cls(index, routine, palette)

        if routine in ROUTINES_WITHOUT_TUNABLE:
            raise PacketError(f"routine {routine.name} takes no tunable")
        if routine in PERCENT_TUNABLE_ROUTINES:
            tunable = _expect_range("glimmer percent", args[2], 0, MAX_PERCENT)
        else:
            tunable = _expect_range("tunable", args[2], 1, MAX_BYTE)
        return cls(index, routine, palette, tunable)

    def args(self):
        if self.tunable is None:
            return (int(self.routine), self.palette)
        return (int(self.routine), self.palette, self.tunable)


@dataclass(frozen=True)
class MainColorChange(Command):
    color: Color
    header: ClassVar[PacketHeader] = PacketHeader.MAIN_COLOR_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 3)
        return cls(index, _parse_color(args))

    def args(self):
        return tuple(self.color)


@dataclass(frozen=True)
class CustomArrayColorChange(Command):
    color_index: int
    color: Color
    header: ClassVar[PacketHeader] = PacketHeader.CUSTOM_ARRAY_COLOR_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 4)
        color_index = _expect_range("custom color index", args[0], 0, PALETTE_CAPACITY - 1)
        return cls(index, color_index, _parse_color(args[1:]))

    def args(self):
        return (self.color_index,) + tuple(self.color)


@dataclass(frozen=True)
class BrightnessChange(Command):
    brightness: int
    header: ClassVar[PacketHeader] = PacketHeader.BRIGHTNESS_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 1)
        # senders round slider values, so anything past the ends is pulled back in
        return cls(index, min(max(args[0], 0), MAX_BRIGHTNESS))

    def args(self):
        return (self.brightness,)


@dataclass(frozen=True)
class SpeedChange(Command):
    speed: int
    header: ClassVar[PacketHeader] = PacketHeader.SPEED_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 1)
        return cls(index, _expect_range("speed", args[0], 0, MAX_SPEED))

    def args(self):
        return (self.speed,)


@dataclass(frozen=True)
class CustomColorCountChange(Command):
    count: int
    header: ClassVar[PacketHeader] = PacketHeader.CUSTOM_COLOR_COUNT_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 1)
        if args[0] <= 1:
            raise PacketError(f"custom color count {args[0]} must be greater than 1")
        return cls(index, args[0])

    def args(self):
        return (self.count,)


@dataclass(frozen=True)
class IdleTimeoutChange(Command):
    minutes: int
    header: ClassVar[PacketHeader] = PacketHeader.IDLE_TIMEOUT_CHANGE

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 1)
        return cls(index, _expect_range("idle timeout", args[0], 0, MAX_IDLE_TIMEOUT_MINUTES))

    def args(self):
        return (self.minutes,)


@dataclass(frozen=True)
class StateUpdateRequest(Command):
    header: ClassVar[PacketHeader] = PacketHeader.STATE_UPDATE_REQUEST


@dataclass(frozen=True)
class CustomArrayUpdateRequest(Command):
    header: ClassVar[PacketHeader] = PacketHeader.CUSTOM_ARRAY_UPDATE_REQUEST


@dataclass(frozen=True)
class ResetSettingsToDefaults(Command):
    header: ClassVar[PacketHeader] = PacketHeader.RESET_SETTINGS_TO_DEFAULTS

    @classmethod
    def parse(cls, index, args):
        _expect_count(args, 2)
        if tuple(args) != RESET_KEY:
            raise PacketError(f"reset requires {RESET_KEY[0]},{RESET_KEY[1]}")
        return cls(index)

    def args(self):
        return RESET_KEY


COMMAND_TYPES: Dict[PacketHeader, Type[Command]] = {
    command.header: command for command in (
        OnOffChange,
        ModeChange,
        MainColorChange,
        CustomArrayColorChange,
        BrightnessChange,
        SpeedChange,
        CustomColorCountChange,
        IdleTimeoutChange,
        StateUpdateRequest,
        CustomArrayUpdateRequest,
        ResetSettingsToDefaults,
    )
}


def parse_command(values: Sequence[int]) -> Command:
    """
    Build a command from the integer values of one message.

    Args:
        values: Header, hardware index, then the header's arguments

    Returns:
        The validated command

    Raises:
        PacketError: If the header is unknown or any argument is invalid
    """
    if len(values) < 2:
        raise PacketError("message needs a header and a hardware index")
    header, index, args = values[0], values[1], list(values[2:])
    try:
        header = PacketHeader(header)
    except ValueError:
        raise PacketError(f"unknown header {header}")
    if index < 0:
        raise PacketError(f"hardware index {index} is negative")
    return COMMAND_TYPES[header].parse(index, args)

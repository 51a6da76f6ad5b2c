"""
Device Multiplexer Module.

This module routes commands to the light devices behind one controller and
decides on every tick which devices render a new frame.

It is responsible for:
- mapping hardware indices (0 meaning every device) to devices
- applying decoded commands to the addressed engines
- the per device update cadence derived from its speed
- forcing idle devices off
- handing finished buffers to the driver callback

It is not responsible for:
- parsing or encoding packets
- reading from or writing to the transport
- pushing colors to the physical LEDs
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from arducor.devices.state import LightDevice, ticks_per_update
from arducor.protocol.commands import (
    BrightnessChange,
    Command,
    CustomArrayColorChange,
    CustomArrayUpdateRequest,
    CustomColorCountChange,
    IdleTimeoutChange,
    MainColorChange,
    ModeChange,
    OnOffChange,
    ResetSettingsToDefaults,
    SpeedChange,
    StateUpdateRequest,
)
from arducor.routines.engine import Routine, SettingResult
from arducor.routines.palettes import Color

# Configure logging
logger = logging.getLogger(__name__)

BROADCAST_INDEX = 0

DriverCallback = Callable[[int, List[Color]], None]


class DeviceConfigurationError(ValueError):
    """Raised when a set of devices cannot be driven by one controller."""


class Reply(Enum):
    """Report a command asks to be sent back."""
    STATE = 'state'
    CUSTOM_ARRAY = 'custom_array'


@dataclass
class DispatchResult:
    """Outcome of applying one command."""
    applied: bool
    echo: bool = False
    reply: Optional[Reply] = None
    targets: List[int] = field(default_factory=list)


# Engine setter used for the tunable carried by a mode change
TUNABLE_SETTERS = {
    Routine.SINGLE_BLINK: 'set_blink_speed',
    Routine.MULTI_RANDOM_SOLID: 'set_blink_speed',
    Routine.SINGLE_WAVE: 'set_bar_size',
    Routine.MULTI_BARS_SOLID: 'set_bar_size',
    Routine.MULTI_BARS_MOVING: 'set_bar_size',
    Routine.SINGLE_GLIMMER: 'set_glimmer_percent',
    Routine.MULTI_GLIMMER: 'set_glimmer_percent',
    Routine.SINGLE_LINEAR_FADE: 'set_fade_speed',
    Routine.SINGLE_SINE_FADE: 'set_fade_speed',
    Routine.SINGLE_SAWTOOTH_FADE_IN: 'set_fade_speed',
    Routine.SINGLE_SAWTOOTH_FADE_OUT: 'set_fade_speed',
    Routine.MULTI_FADE: 'set_fade_speed',
}


class DeviceMultiplexer:
    """Owns every light device of a controller, keyed by hardware index."""

    def __init__(self, devices: Iterable[LightDevice], driver: Optional[DriverCallback] = None):
        """
        Args:
            devices: Devices to drive, hardware indices must be unique and start at 1
            driver: Called with (index, colors) after a device renders a frame

        Raises:
            DeviceConfigurationError: If there are no devices or indices clash
        """
        self.devices: Dict[int, LightDevice] = {}
        for device in devices:
            if device.index <= BROADCAST_INDEX:
                raise DeviceConfigurationError(f"Hardware index must be at least 1, got {device.index}")
            if device.index in self.devices:
                raise DeviceConfigurationError(f"Duplicate hardware index {device.index}")
            self.devices[device.index] = device
        if not self.devices:
            raise DeviceConfigurationError("At least one device is required")

        self.devices = dict(sorted(self.devices.items()))
        self.driver = driver

        self._handlers = {
            OnOffChange: self._on_off_change,
            ModeChange: self._mode_change,
            MainColorChange: self._main_color_change,
            CustomArrayColorChange: self._custom_array_color_change,
            BrightnessChange: self._brightness_change,
            SpeedChange: self._speed_change,
            CustomColorCountChange: self._custom_color_count_change,
            IdleTimeoutChange: self._idle_timeout_change,
            StateUpdateRequest: self._state_update_request,
            CustomArrayUpdateRequest: self._custom_array_update_request,
            ResetSettingsToDefaults: self._reset_settings,
        }

        logger.info(f"Device multiplexer initialized with {len(self.devices)} device(s)")

    def targets(self, index: int) -> List[LightDevice]:
        """Devices addressed by a hardware index. An unknown index addresses nothing."""
        if index == BROADCAST_INDEX:
            return list(self.devices.values())
        device = self.devices.get(index)
        return [device] if device else []

    def ticks_per_update(self, index: int) -> int:
        return ticks_per_update(self.devices[index].speed)

    def get_buffer(self, index: int) -> List[Color]:
        """Colors of the last frame rendered for a device."""
        return self.devices[index].engine.colors()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def dispatch(self, command: Command, now_ms: int) -> DispatchResult:
        """
        Apply a command to every device it addresses.

        Args:
            command: Decoded command
            now_ms: Current time, recorded as the last valid command time

        Returns:
            DispatchResult describing whether it applied and what to send back
        """
        devices = self.targets(command.index)
        if not devices:
            logger.debug(f"No device at hardware index {command.index}, ignoring {type(command).__name__}")
            return DispatchResult(applied=True)

        handler = self._handlers[type(command)]
        result = DispatchResult(applied=False, targets=[d.index for d in devices])
        for device in devices:
            device.last_command_ms = now_ms
            if handler(device, command):
                result.applied = True

        if isinstance(command, StateUpdateRequest):
            result.reply = Reply.STATE
        elif isinstance(command, CustomArrayUpdateRequest):
            result.reply = Reply.CUSTOM_ARRAY
        else:
            result.echo = result.applied
        return result

    def _log_rejected(self, device: LightDevice, setting: SettingResult) -> bool:
        if not setting:
            logger.warning(f"Device {device.index} rejected setting: {setting.reason}")
        return setting.applied

    def _on_off_change(self, device: LightDevice, command: OnOffChange) -> bool:
        if command.on:
            if device.engine.turn_on():
                device.restart_cadence()
        elif device.engine.turn_off():
            device.refresh_pending = True
        return True

    def _mode_change(self, device: LightDevice, command: ModeChange) -> bool:
        engine = device.engine
        changed = False
        if command.tunable is not None:
            setting = getattr(engine, TUNABLE_SETTERS[command.routine])(command.tunable)
            self._log_rejected(device, setting)
            changed = setting.changed
        changed = engine.select(command.routine, command.palette) or changed
        changed = engine.turn_on() or changed
        if changed:
            device.restart_cadence()
        return True

    def _main_color_change(self, device: LightDevice, command: MainColorChange) -> bool:
        setting = device.engine.set_main_color(command.color)
        if setting.changed:
            device.refresh_pending = True
        return self._log_rejected(device, setting)

    def _custom_array_color_change(self, device: LightDevice, command: CustomArrayColorChange) -> bool:
        setting = device.engine.set_custom_color(command.color_index, command.color)
        if setting.changed:
            device.refresh_pending = True
        return self._log_rejected(device, setting)

    def _brightness_change(self, device: LightDevice, command: BrightnessChange) -> bool:
        setting = device.engine.set_brightness(command.brightness)
        if setting.changed:
            device.refresh_pending = True
        return self._log_rejected(device, setting)

    def _speed_change(self, device: LightDevice, command: SpeedChange) -> bool:
        if command.speed != device.speed:
            device.speed = command.speed
            device.restart_cadence()
        return True

    def _custom_color_count_change(self, device: LightDevice, command: CustomColorCountChange) -> bool:
        setting = device.engine.set_custom_color_count(command.count)
        if setting.changed:
            device.refresh_pending = True
        return self._log_rejected(device, setting)

    def _idle_timeout_change(self, device: LightDevice, command: IdleTimeoutChange) -> bool:
        device.idle_timeout_minutes = command.minutes
        return True

    def _state_update_request(self, device: LightDevice, command: StateUpdateRequest) -> bool:
        return True

    def _custom_array_update_request(self, device: LightDevice, command: CustomArrayUpdateRequest) -> bool:
        return True

    def _reset_settings(self, device: LightDevice, command: ResetSettingsToDefaults) -> bool:
        device.engine.reset_to_defaults()
        device.restart_cadence()
        logger.info(f"Device {device.index} reset to defaults")
        return True

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def check_timeouts(self, now_ms: int) -> List[int]:
        """Turn off every device idle for longer than its timeout. Returns their indices."""
        timed_out = []
        for device in self.devices.values():
            if device.engine.is_on and device.is_timed_out(now_ms):
                device.engine.turn_off()
                device.refresh_pending = True
                timed_out.append(device.index)
                logger.info(f"Device {device.index} idle for {device.idle_timeout_minutes} minutes, turning off")
        return timed_out

    def tick(self, now_ms: int) -> List[int]:
        """
        Run one controller tick.

        Returns:
            Indices of the devices that rendered a frame
        """
        self.check_timeouts(now_ms)

        rendered = []
        for device in self.devices.values():
            due = device.is_due()
            if due or device.refresh_pending:
                engine = device.engine
                engine.tick(advance=due)
                engine.apply_brightness()
                device.force_update = False
                device.refresh_pending = False
                rendered.append(device.index)
                if self.driver:
                    self.driver(device.index, engine.colors())
            device.tick_counter += 1
        return rendered

"""
Configuration Module.

Reads the controller INI file and builds the controller it describes.

Example::

    [controller]
    tick_interval_ms = 10
    checksum_enabled = true
    max_packet_size = 500
    avoid_repeats = false

    [device.1]
    name = Desk
    led_count = 64
    speed = 100
    idle_timeout_minutes = 120
"""

import configparser
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from arducor.controller import DEFAULT_TICK_INTERVAL_MS, Controller
from arducor.devices.multiplexer import DeviceConfigurationError, DeviceMultiplexer, DriverCallback
from arducor.devices.state import DEFAULT_IDLE_TIMEOUT_MINUTES, DEFAULT_SPEED, MAX_SPEED, LightDevice
from arducor.protocol.codec import DEFAULT_MAX_PACKET_SIZE, PacketCodec
from arducor.routines.engine import RoutineEngine

# Configure logging
logger = logging.getLogger(__name__)

CONTROLLER_SECTION = 'controller'
DEVICE_SECTION_PREFIX = 'device.'
DEFAULT_LED_COUNT = 64


class ConfigError(Exception):
    """Raised when a configuration file cannot be read or holds invalid values."""


@dataclass
class DeviceConfig:
    index: int = 1
    name: str = 'ArduCor'
    led_count: int = DEFAULT_LED_COUNT
    light_type: int = 0
    product_type: int = 0
    speed: int = DEFAULT_SPEED
    idle_timeout_minutes: int = DEFAULT_IDLE_TIMEOUT_MINUTES


@dataclass
class ControllerConfig:
    tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS
    checksum_enabled: bool = True
    max_packet_size: int = DEFAULT_MAX_PACKET_SIZE
    avoid_repeats: bool = False
    seed: Optional[int] = None
    devices: List[DeviceConfig] = field(default_factory=lambda: [DeviceConfig()])


def _read_device(parser: configparser.ConfigParser, section: str) -> DeviceConfig:
    suffix = section[len(DEVICE_SECTION_PREFIX):]
    try:
        index = int(suffix)
    except ValueError:
        raise ConfigError(f"Device section '{section}' must end in a hardware index")

    device = DeviceConfig(
        index=index,
        name=parser.get(section, 'name', fallback=f"ArduCor {index}"),
        led_count=parser.getint(section, 'led_count', fallback=DEFAULT_LED_COUNT),
        light_type=parser.getint(section, 'light_type', fallback=0),
        product_type=parser.getint(section, 'product_type', fallback=0),
        speed=parser.getint(section, 'speed', fallback=DEFAULT_SPEED),
        idle_timeout_minutes=parser.getint(section, 'idle_timeout_minutes', fallback=DEFAULT_IDLE_TIMEOUT_MINUTES),
    )
    if not 0 <= device.speed <= MAX_SPEED:
        raise ConfigError(f"[{section}] speed {device.speed} outside 0-{MAX_SPEED}")
    if device.idle_timeout_minutes < 0:
        raise ConfigError(f"[{section}] idle_timeout_minutes must not be negative")
    if any(c in device.name for c in ',;&#'):
        raise ConfigError(f"[{section}] name may not contain protocol delimiters")
    return device


def parse_config(parser: configparser.ConfigParser) -> ControllerConfig:
    """Convert a loaded parser into a ControllerConfig."""
    config = ControllerConfig()
    try:
        if parser.has_section(CONTROLLER_SECTION):
            section = CONTROLLER_SECTION
            config.tick_interval_ms = parser.getint(section, 'tick_interval_ms', fallback=config.tick_interval_ms)
            config.checksum_enabled = parser.getboolean(section, 'checksum_enabled', fallback=config.checksum_enabled)
            config.max_packet_size = parser.getint(section, 'max_packet_size', fallback=config.max_packet_size)
            config.avoid_repeats = parser.getboolean(section, 'avoid_repeats', fallback=config.avoid_repeats)
            if parser.has_option(section, 'seed'):
                config.seed = parser.getint(section, 'seed')

        devices = [_read_device(parser, s) for s in parser.sections() if s.startswith(DEVICE_SECTION_PREFIX)]
    except ValueError as e:
        raise ConfigError(f"Invalid configuration value: {e}")

    if devices:
        config.devices = devices
    if config.tick_interval_ms <= 0:
        raise ConfigError(f"tick_interval_ms must be positive, got {config.tick_interval_ms}")
    if config.max_packet_size <= 0:
        raise ConfigError(f"max_packet_size must be positive, got {config.max_packet_size}")
    return config


def load_config(config_path: Optional[str] = None) -> ControllerConfig:
    """
    Load configuration from file.

    A missing file is not an error: defaults are used with a single device.

    Raises:
        ConfigError: If the file exists but cannot be parsed
    """
    parser = configparser.ConfigParser(interpolation=None)
    if config_path is None:
        logger.info("No config file given. Using defaults.")
    elif not os.path.exists(config_path):
        logger.warning(f"Config file '{config_path}' not found. Using defaults.")
    else:
        try:
            parser.read(config_path)
        except configparser.Error as e:
            raise ConfigError(f"Error loading configuration from {config_path}: {e}")
        logger.info(f"Loaded configuration from {config_path}")
    return parse_config(parser)


def build_controller(config: ControllerConfig, driver: Optional[DriverCallback] = None, **kwargs) -> Controller:
    """
    Create the devices, multiplexer, codec and controller described by a config.

    Raises:
        DeviceConfigurationError: If the devices cannot be driven together
    """
    rng = np.random.default_rng(config.seed)
    devices = []
    for device_config in config.devices:
        if device_config.led_count <= 0:
            raise DeviceConfigurationError(
                f"Device {device_config.index} needs a positive LED count, got {device_config.led_count}")
        engine = RoutineEngine(device_config.led_count, rng=rng, avoid_repeats=config.avoid_repeats)
        devices.append(LightDevice(
            index=device_config.index,
            engine=engine,
            name=device_config.name,
            light_type=device_config.light_type,
            product_type=device_config.product_type,
            speed=device_config.speed,
            idle_timeout_minutes=device_config.idle_timeout_minutes,
        ))

    multiplexer = DeviceMultiplexer(devices, driver=driver)
    codec = PacketCodec(checksum_enabled=config.checksum_enabled, max_packet_size=config.max_packet_size)
    return Controller(multiplexer, codec, tick_interval_ms=config.tick_interval_ms, **kwargs)

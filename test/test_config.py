"""
Tests for configuration loading and controller construction.
"""

import textwrap

import pytest

from arducor.config import ConfigError, ControllerConfig, DeviceConfig, build_controller, load_config
from arducor.devices.multiplexer import DeviceConfigurationError


def write_config(tmp_path, text):
    path = tmp_path / "arducor.ini"
    path.write_text(textwrap.dedent(text))
    return str(path)


def test_no_file_uses_defaults():
    config = load_config(None)
    assert config.checksum_enabled is True
    assert config.max_packet_size == 500
    assert len(config.devices) == 1
    assert config.devices[0].index == 1
    assert config.devices[0].led_count == 64


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "missing.ini"))
    assert config == ControllerConfig()


def test_full_file(tmp_path):
    path = write_config(tmp_path, """
        [controller]
        tick_interval_ms = 20
        checksum_enabled = false
        max_packet_size = 200
        avoid_repeats = yes
        seed = 5

        [device.2]
        name = Shelf
        led_count = 30
        speed = 50
        idle_timeout_minutes = 0

        [device.1]
        name = Desk
        led_count = 12
        light_type = 1
        product_type = 3
    """)
    config = load_config(path)

    assert config.tick_interval_ms == 20
    assert config.checksum_enabled is False
    assert config.max_packet_size == 200
    assert config.avoid_repeats is True
    assert config.seed == 5
    assert config.devices == [
        DeviceConfig(index=2, name="Shelf", led_count=30, speed=50, idle_timeout_minutes=0),
        DeviceConfig(index=1, name="Desk", led_count=12, light_type=1, product_type=3),
    ]


@pytest.mark.parametrize("text", [
    "[controller]\ntick_interval_ms = fast\n",
    "[controller]\ntick_interval_ms = 0\n",
    "[device.x]\nled_count = 4\n",
    "[device.1]\nspeed = 201\n",
    "[device.1]\nname = a;b\n",
    "led_count = 4\n",
])
def test_invalid_files(tmp_path, text):
    with pytest.raises(ConfigError):
        load_config(write_config(tmp_path, text))


def test_build_controller(tmp_path):
    path = write_config(tmp_path, """
        [controller]
        checksum_enabled = false
        tick_interval_ms = 5

        [device.1]
        led_count = 3
        [device.4]
        led_count = 7
    """)
    controller = build_controller(load_config(path), clock=lambda: 0)

    assert controller.tick_interval_ms == 5
    assert controller.codec.checksum_enabled is False
    assert list(controller.multiplexer.devices) == [1, 4]
    assert controller.multiplexer.devices[4].led_count == 7


def test_build_controller_rejects_empty_strip():
    config = ControllerConfig(devices=[DeviceConfig(led_count=0)])
    with pytest.raises(DeviceConfigurationError):
        build_controller(config)


def test_build_controller_rejects_duplicate_index(tmp_path):
    path = write_config(tmp_path, """
        [device.1]
        led_count = 3
        [device.01]
        led_count = 3
    """)
    with pytest.raises(DeviceConfigurationError):
        build_controller(load_config(path))

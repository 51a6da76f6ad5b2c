"""
Tests for the device multiplexer.
"""

import unittest
from unittest.mock import MagicMock

import numpy as np
import pytest

from arducor.devices.multiplexer import DeviceConfigurationError, DeviceMultiplexer, Reply
from arducor.devices.state import LightDevice, ticks_per_update
from arducor.protocol.commands import (
    BrightnessChange,
    CustomArrayColorChange,
    CustomArrayUpdateRequest,
    IdleTimeoutChange,
    MainColorChange,
    ModeChange,
    OnOffChange,
    ResetSettingsToDefaults,
    SpeedChange,
    StateUpdateRequest,
)
from arducor.routines.engine import Routine, RoutineEngine
from arducor.routines.palettes import BLACK, Color, ColorGroup

MINUTE_MS = 60 * 1000


def make_device(index, led_count=4, **kwargs):
    return LightDevice(index, RoutineEngine(led_count, rng=np.random.default_rng(index)), **kwargs)


class TestConstruction(unittest.TestCase):
    """Test device set validation."""

    def test_requires_devices(self):
        with self.assertRaises(DeviceConfigurationError):
            DeviceMultiplexer([])

    def test_duplicate_index(self):
        with self.assertRaises(DeviceConfigurationError):
            DeviceMultiplexer([make_device(1), make_device(1)])

    def test_broadcast_index_reserved(self):
        with self.assertRaises(DeviceConfigurationError):
            DeviceMultiplexer([make_device(0)])

    def test_devices_ordered_by_index(self):
        multiplexer = DeviceMultiplexer([make_device(3), make_device(1)])
        self.assertEqual(list(multiplexer.devices), [1, 3])


class TestDispatch(unittest.TestCase):
    """Test applying commands to devices."""

    def setUp(self):
        self.driver = MagicMock()
        self.multiplexer = DeviceMultiplexer([make_device(1), make_device(2)], driver=self.driver)
        self.first = self.multiplexer.devices[1]
        self.second = self.multiplexer.devices[2]

    def test_solid_at_half_brightness(self):
        mux = self.multiplexer
        mux.dispatch(MainColorChange(1, Color(0, 127, 0)), 0)
        mux.dispatch(ModeChange(1, Routine.SINGLE_SOLID, 0), 0)
        mux.dispatch(BrightnessChange(1, 50), 0)
        mux.tick(0)

        self.assertEqual(mux.get_buffer(1), [(0, 63, 0)] * 4)
        self.driver.assert_any_call(1, [(0, 63, 0)] * 4)

    def test_broadcast_custom_color(self):
        result = self.multiplexer.dispatch(CustomArrayColorChange(0, 0, Color(10, 20, 30)), 0)
        self.assertTrue(result.applied)
        self.assertTrue(result.echo)
        self.assertEqual(result.targets, [1, 2])
        self.assertEqual(self.first.engine.custom.color(0), Color(10, 20, 30))
        self.assertEqual(self.second.engine.custom.color(0), Color(10, 20, 30))

    def test_unknown_index_is_a_no_op(self):
        result = self.multiplexer.dispatch(MainColorChange(5, Color(1, 2, 3)), 0)
        self.assertTrue(result.applied)
        self.assertFalse(result.echo)
        self.assertEqual(result.targets, [])
        self.assertNotEqual(self.first.engine.main_color, Color(1, 2, 3))
        self.assertNotEqual(self.second.engine.main_color, Color(1, 2, 3))

    def test_mode_change_sets_tunable(self):
        self.multiplexer.dispatch(ModeChange(1, Routine.SINGLE_BLINK, 0, 7), 0)
        self.assertEqual(self.first.engine.routine, Routine.SINGLE_BLINK)
        self.assertEqual(self.first.engine.blink_speed, 7)
        self.assertEqual(self.second.engine.blink_speed, 3)

    def test_mode_change_keeps_routine_when_tunable_rejected(self):
        """A bar size the device cannot show is ignored but the routine still changes."""
        result = self.multiplexer.dispatch(ModeChange(1, Routine.MULTI_BARS_SOLID, ColorGroup.RGB, 4), 0)
        self.assertTrue(result.applied)
        self.assertEqual(self.first.engine.routine, Routine.MULTI_BARS_SOLID)
        self.assertEqual(self.first.engine.bar_size, 2)

    def test_mode_change_turns_on(self):
        self.multiplexer.dispatch(OnOffChange(1, False), 0)
        self.assertFalse(self.first.engine.is_on)
        self.multiplexer.dispatch(ModeChange(1, Routine.SINGLE_SOLID, 0), 0)
        self.assertTrue(self.first.engine.is_on)

    def test_mode_change_restarts_cadence_only_on_change(self):
        mux = self.multiplexer
        mux.tick(0)
        mux.tick(1)
        mux.tick(2)
        self.assertEqual(self.first.tick_counter, 3)

        mux.dispatch(ModeChange(1, Routine.SINGLE_GLIMMER, 0), 3)
        self.assertEqual(self.first.tick_counter, 3)

        mux.dispatch(ModeChange(1, Routine.SINGLE_SOLID, 0), 3)
        self.assertEqual(self.first.tick_counter, 0)
        self.assertTrue(self.first.force_update)

    def test_turn_off_sends_black(self):
        mux = self.multiplexer
        mux.tick(0)
        mux.dispatch(OnOffChange(1, False), 1)
        rendered = mux.tick(1)
        self.assertIn(1, rendered)
        self.assertEqual(mux.get_buffer(1), [BLACK] * 4)

    def test_state_request_replies(self):
        result = self.multiplexer.dispatch(StateUpdateRequest(0), 0)
        self.assertEqual(result.reply, Reply.STATE)
        self.assertFalse(result.echo)
        self.assertEqual(result.targets, [1, 2])

        result = self.multiplexer.dispatch(CustomArrayUpdateRequest(2), 0)
        self.assertEqual(result.reply, Reply.CUSTOM_ARRAY)
        self.assertEqual(result.targets, [2])

    def test_reset(self):
        engine = self.first.engine
        engine.set_main_color(Color(1, 2, 3))
        engine.set_brightness(90)
        self.multiplexer.dispatch(ResetSettingsToDefaults(1), 0)
        self.assertEqual(engine.main_color, Color(100, 25, 0))
        self.assertEqual(engine.brightness, 50)

    def test_valid_command_keeps_device_alive(self):
        self.multiplexer.dispatch(StateUpdateRequest(1), 5000)
        self.assertEqual(self.first.last_command_ms, 5000)
        self.assertEqual(self.second.last_command_ms, 0)


class TestTicking(unittest.TestCase):
    """Test update cadence and idle timeouts."""

    def test_speed_100_renders_every_other_tick(self):
        device = make_device(1, speed=100)
        mux = DeviceMultiplexer([device])
        rendered = [bool(mux.tick(t)) for t in range(6)]
        self.assertEqual(rendered, [True, False, True, False, True, False])

    def test_speed_zero_renders_only_when_forced(self):
        device = make_device(1, speed=0)
        mux = DeviceMultiplexer([device])
        self.assertEqual(mux.tick(0), [1])
        self.assertEqual(mux.tick(1), [])
        self.assertEqual(mux.tick(2), [])

        mux.dispatch(MainColorChange(1, Color(9, 9, 9)), 3)
        self.assertEqual(mux.tick(3), [1])

    def test_brightness_refresh_does_not_advance(self):
        device = make_device(1, led_count=6, speed=0)
        mux = DeviceMultiplexer([device])
        mux.dispatch(ModeChange(1, Routine.MULTI_BARS_MOVING, ColorGroup.RGB), 0)
        mux.tick(0)
        self.assertEqual(device.engine.phase.offset, 1)

        mux.dispatch(BrightnessChange(1, 80), 1)
        self.assertEqual(mux.tick(1), [1])
        self.assertEqual(device.engine.phase.offset, 1)

    def test_custom_color_change_at_speed_zero_stays_lit(self):
        """A stopped multi color routine redraws its new palette instead of going dark."""
        for routine in (Routine.MULTI_FADE, Routine.MULTI_RANDOM_SOLID):
            with self.subTest(routine=routine):
                device = make_device(1, speed=0)
                mux = DeviceMultiplexer([device])
                mux.dispatch(ModeChange(1, routine, ColorGroup.CUSTOM), 0)
                for t in range(3):
                    mux.tick(t)

                mux.dispatch(CustomArrayColorChange(1, 0, Color(10, 20, 30)), 3)
                self.assertEqual(mux.tick(3), [1])
                for t in range(4, 8):
                    mux.tick(t)
                self.assertNotEqual(mux.get_buffer(1), [BLACK] * 4)

    def test_custom_color_change_keeps_blink_phase(self):
        device = make_device(1, speed=0)
        mux = DeviceMultiplexer([device])
        mux.dispatch(ModeChange(1, Routine.SINGLE_BLINK, ColorGroup.CUSTOM), 0)
        mux.tick(0)
        lit = mux.get_buffer(1)
        self.assertNotEqual(lit, [BLACK] * 4)

        mux.dispatch(CustomArrayColorChange(1, 0, Color(10, 20, 30)), 1)
        mux.tick(1)
        self.assertEqual(mux.get_buffer(1), lit)

    def test_speed_change(self):
        device = make_device(1)
        mux = DeviceMultiplexer([device])
        mux.dispatch(SpeedChange(1, 200), 0)
        self.assertEqual(mux.ticks_per_update(1), 1)
        self.assertEqual([bool(mux.tick(t)) for t in range(3)], [True, True, True])

    def test_idle_timeout(self):
        device = make_device(1, idle_timeout_minutes=1)
        mux = DeviceMultiplexer([device])
        mux.dispatch(StateUpdateRequest(1), 1000)

        self.assertEqual(mux.check_timeouts(1000 + MINUTE_MS - 1), [])
        self.assertTrue(device.engine.is_on)

        mux.tick(1000 + MINUTE_MS)
        self.assertFalse(device.engine.is_on)
        self.assertEqual(mux.get_buffer(1), [BLACK] * 4)

    def test_idle_timeout_keeps_settings(self):
        device = make_device(1, idle_timeout_minutes=1)
        mux = DeviceMultiplexer([device])
        mux.dispatch(MainColorChange(1, Color(7, 8, 9)), 0)
        mux.tick(MINUTE_MS)
        self.assertFalse(device.engine.is_on)
        self.assertEqual(device.engine.main_color, Color(7, 8, 9))

    def test_zero_timeout_never_expires(self):
        device = make_device(1, idle_timeout_minutes=0)
        mux = DeviceMultiplexer([device])
        mux.tick(10 ** 9)
        self.assertTrue(device.engine.is_on)

    def test_idle_timeout_change(self):
        device = make_device(1)
        mux = DeviceMultiplexer([device])
        mux.dispatch(IdleTimeoutChange(1, 5), 0)
        self.assertEqual(device.idle_timeout_minutes, 5)
        self.assertEqual(device.minutes_until_timeout(MINUTE_MS), 4)


@pytest.mark.parametrize("speed, expected", [
    (0, 0),
    (200, 1),
    (150, 2),
    (100, 2),
    (3, 67),
    (1, 200),
])
def test_ticks_per_update(speed, expected):
    assert ticks_per_update(speed) == expected


def test_factory_fixture_builds_devices(make_multiplexer):
    multiplexer = make_multiplexer(device_count=3, led_count=5)
    assert list(multiplexer.devices) == [1, 2, 3]
    assert all(d.led_count == 5 for d in multiplexer.devices.values())


def test_to_dict(make_multiplexer):
    device = make_multiplexer().devices[1]
    state = device.to_dict(0)
    assert state['routine'] == 'single_glimmer'
    assert state['group'] == 'custom'
    assert state['minutes_until_timeout'] == 120

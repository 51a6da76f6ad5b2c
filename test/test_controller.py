"""
Tests for the controller loop and its replies.
"""

import threading
import unittest

import numpy as np

from arducor.controller import Controller
from arducor.devices.multiplexer import DeviceMultiplexer
from arducor.devices.state import LightDevice
from arducor.protocol.codec import PacketCodec
from arducor.protocol.commands import BrightnessChange, MainColorChange, ModeChange
from arducor.routines.engine import Routine, RoutineEngine
from arducor.routines.palettes import Color
from arducor.transport import LoopbackTransport


class TestController(unittest.TestCase):
    """Test frame processing through the controller."""

    def setUp(self):
        rng = np.random.default_rng(3)
        self.devices = [
            LightDevice(1, RoutineEngine(4, rng=rng), name="Desk"),
            LightDevice(2, RoutineEngine(4, rng=rng), name="Shelf"),
        ]
        self.driver_calls = []
        self.multiplexer = DeviceMultiplexer(self.devices, driver=lambda i, c: self.driver_calls.append((i, c)))
        self.codec = PacketCodec()
        self.controller = Controller(self.multiplexer, self.codec, tick_interval_ms=1, clock=lambda: 0)

    def frame(self, *commands):
        return self.codec.encode_frame([self.codec.encode(c) for c in commands])

    def test_applied_commands_echoed_in_one_frame(self):
        commands = [MainColorChange(1, Color(0, 127, 0)), ModeChange(1, Routine.SINGLE_SOLID, 0)]
        result = self.controller.process_frame(self.frame(*commands), 0)

        self.assertEqual(result.successes, [True, True])
        self.assertEqual(self.controller.drain(), [self.frame(*commands)])
        self.assertEqual(self.controller.drain(), [])

    def test_bad_message_not_echoed(self):
        good = self.codec.encode(BrightnessChange(0, 20))
        frame = self.codec.encode_frame([good, "4,0,30#1"])
        result = self.controller.process_frame(frame, 0)

        self.assertEqual(result.successes, [True, False])
        self.assertEqual(self.controller.drain(), [self.codec.encode_frame([good])])
        self.assertEqual(self.devices[0].engine.brightness, 20)
        self.assertEqual(self.devices[1].engine.brightness, 20)

    def test_state_request(self):
        self.controller.process_frame(self.codec.encode_frame([self.codec.encode_values([8, 2])]), 0)
        expected = self.codec.encode_frame([self.codec.encode_values([8, 2, 1, 1, 100, 25, 0, 3, 0, 50, 100, 120, 120])])
        self.assertEqual(self.controller.drain(), [expected])

    def test_custom_array_request(self):
        self.controller.process_frame(self.codec.encode_frame([self.codec.encode_values([9, 0])]), 0)
        frames = self.controller.drain()
        self.assertEqual(len(frames), 1)
        self.assertEqual(frames[0].count("&"), 1)
        self.assertTrue(frames[0].startswith("9,1,2,"))

    def test_discovery(self):
        result = self.controller.process_frame("DISCOVERY_PACKET;", 0)
        self.assertTrue(result.discovery)
        frames = self.controller.drain()
        self.assertEqual(len(frames), 1)
        self.assertTrue(frames[0].startswith("DISCOVERY_PACKET,3,0,1,0,500,2,Desk,0,0,Shelf,0,0#"))

    def test_process_bytes_split_frames(self):
        data = self.frame(BrightnessChange(1, 10)).encode('ascii')
        self.assertEqual(self.controller.process_bytes(data[:5], 0), [])
        results = self.controller.process_bytes(data[5:], 0)
        self.assertEqual(len(results), 1)
        self.assertEqual(self.devices[0].engine.brightness, 10)

    def test_step_reads_ticks_and_writes(self):
        transport = LoopbackTransport()
        transport.inject(self.frame(MainColorChange(2, Color(0, 127, 0)), ModeChange(2, Routine.SINGLE_SOLID, 0)))

        rendered = self.controller.step(transport, now_ms=0)

        self.assertEqual(rendered, [1, 2])
        self.assertEqual(len(transport.sent), 1)
        self.assertEqual(self.multiplexer.get_buffer(2), [(0, 63, 0)] * 4)
        self.assertIn((2, [(0, 63, 0)] * 4), self.driver_calls)

    def test_run_stops_after_max_ticks(self):
        transport = LoopbackTransport()
        self.controller.run(transport, max_ticks=3)
        self.assertEqual(self.controller.ticks, 3)

    def test_run_returns_when_stopped(self):
        stop_event = threading.Event()
        stop_event.set()
        self.controller.run(LoopbackTransport(), stop_event=stop_event)
        self.assertEqual(self.controller.ticks, 0)

    def test_idle_timeout_counts_from_start(self):
        controller = Controller(DeviceMultiplexer([LightDevice(1, RoutineEngine(2), idle_timeout_minutes=1)]),
                                clock=lambda: 500)
        device = controller.multiplexer.devices[1]
        self.assertEqual(device.last_command_ms, 500)
        controller.multiplexer.tick(500 + 60 * 1000)
        self.assertFalse(device.engine.is_on)

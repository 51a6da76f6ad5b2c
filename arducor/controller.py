"""
Controller Module.

The controller ties the codec, the frame reader and the device multiplexer
together and runs the cooperative tick loop.

It is responsible for:
- feeding transport bytes through the frame reader and codec
- dispatching decoded commands in arrival order
- queueing echo, state and discovery replies
- ticking the multiplexer at a fixed interval

It is not responsible for:
- the contents of any packet (see arducor.protocol)
- animation state (see arducor.routines)
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, List, Optional

from arducor.devices.multiplexer import DeviceMultiplexer, Reply
from arducor.protocol.codec import FrameResult, PacketCodec
from arducor.protocol.framing import FrameReader

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_MS = 10


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class Controller:
    """Single threaded owner of the codec and the devices."""

    def __init__(self, multiplexer: DeviceMultiplexer, codec: Optional[PacketCodec] = None,
                 tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS,
                 clock: Callable[[], int] = monotonic_ms):
        """
        Initialize the controller.

        Args:
            multiplexer: Devices driven by this controller
            codec: Packet codec, checksums enabled by default
            tick_interval_ms: Time between ticks of the run loop
            clock: Returns the current time in milliseconds
        """
        self.multiplexer = multiplexer
        self.codec = codec or PacketCodec()
        self.reader = FrameReader(self.codec.max_packet_size)
        self.tick_interval_ms = tick_interval_ms
        self.clock = clock
        self.outbox = deque()
        self.ticks = 0

        # idle timeouts count from start up
        now_ms = self.clock()
        for device in self.multiplexer.devices.values():
            device.last_command_ms = now_ms

        logger.info(f"Controller initialized, tick interval {tick_interval_ms} ms, "
                    f"checksums {'on' if self.codec.checksum_enabled else 'off'}")

    def process_frame(self, frame: str, now_ms: int) -> FrameResult:
        """
        Decode a frame and apply its commands left to right.

        Replies are queued on the outbox: one frame of echoes for the applied
        commands, then any state or custom array reports that were requested.
        """
        result = self.codec.decode_frame(frame)
        devices = self.multiplexer.devices

        if result.discovery:
            logger.debug("Answering discovery request")
            self.outbox.append(self.codec.discovery_packet(devices.values()))
            return result

        echoes = []
        reports = []
        for message in result.messages:
            if message.command is None:
                continue
            dispatch = self.multiplexer.dispatch(message.command, now_ms)
            message.applied = dispatch.applied
            if dispatch.echo:
                echoes.append(message.command)
            if dispatch.reply == Reply.STATE:
                reports.append(self.codec.state_packet([devices[i] for i in dispatch.targets], now_ms))
            elif dispatch.reply == Reply.CUSTOM_ARRAY:
                reports.append(self.codec.custom_array_packet([devices[i] for i in dispatch.targets]))

        echo = self.codec.echo_packet(echoes)
        if echo:
            self.outbox.append(echo)
        self.outbox.extend(reports)
        return result

    def process_bytes(self, data: bytes, now_ms: int) -> List[FrameResult]:
        """Feed raw transport bytes and process every frame they complete."""
        return [self.process_frame(frame, now_ms) for frame in self.reader.feed(data)]

    def drain(self) -> List[str]:
        """Remove and return every queued outbound frame."""
        frames = list(self.outbox)
        self.outbox.clear()
        return frames

    def step(self, transport, now_ms: Optional[int] = None) -> List[int]:
        """
        Run one iteration: read, process, tick, write.

        Args:
            transport: Object with non blocking read() -> bytes and write(bytes)
            now_ms: Current time, taken from the clock if omitted

        Returns:
            Indices of the devices that rendered a frame
        """
        if now_ms is None:
            now_ms = self.clock()
        data = transport.read()
        if data:
            self.process_bytes(data, now_ms)
        rendered = self.multiplexer.tick(now_ms)
        for frame in self.drain():
            transport.write(frame.encode('ascii'))
        self.ticks += 1
        return rendered

    def run(self, transport, stop_event: Optional[threading.Event] = None, max_ticks: Optional[int] = None) -> None:
        """
        Tick until stop_event is set or max_ticks iterations have run.

        Args:
            transport: Byte transport to serve
            stop_event: Event that stops the loop
            max_ticks: Optional limit on iterations
        """
        stop_event = stop_event or threading.Event()
        interval_s = self.tick_interval_ms / 1000.0
        ran = 0
        logger.info("Controller loop started")
        while not stop_event.is_set():
            try:
                self.step(transport)
            except Exception as e:
                logger.error(f"Error in controller loop: {e}", exc_info=True)

            ran += 1
            if max_ticks is not None and ran >= max_ticks:
                break
            stop_event.wait(interval_s)
        logger.info(f"Controller loop stopped after {ran} ticks")

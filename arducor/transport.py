"""
Byte transports for development and testing.

The controller needs only ``read() -> bytes`` (never blocking, ``b""`` when
nothing is waiting) and ``write(data)``. Real serial or network transports
live outside this package.
"""

import io
import logging
import os
import select
from collections import deque
from typing import BinaryIO, List, Optional

# Configure logging
logger = logging.getLogger(__name__)


class LoopbackTransport:
    """In-memory transport: inject inbound bytes, collect outbound bytes."""

    def __init__(self):
        self._inbound = deque()
        self.sent: List[bytes] = []

    def inject(self, data) -> None:
        if isinstance(data, str):
            data = data.encode('ascii')
        self._inbound.append(bytes(data))

    def read(self) -> bytes:
        data = b''.join(self._inbound)
        self._inbound.clear()
        return data

    def write(self, data: bytes) -> None:
        logger.debug(f"Loopback sent {data!r}")
        self.sent.append(bytes(data))

    def frames(self) -> List[str]:
        """Outbound frames written so far, decoded."""
        return [data.decode('ascii') for data in self.sent]


class StreamTransport:
    """
    Adapts binary file objects to the transport interface.

    Reads return at most ``chunk_size`` bytes and never wait for input: a pipe
    or terminal is polled with a zero timeout and read only when it has bytes
    waiting. Streams without a file descriptor, such as in-memory buffers, are
    read directly. ``exhausted`` turns true once the input hits EOF.
    """

    def __init__(self, input_stream: BinaryIO, output_stream: Optional[BinaryIO] = None, chunk_size: int = 512):
        self.input_stream = input_stream
        self.output_stream = output_stream
        self.chunk_size = chunk_size
        self.exhausted = False
        try:
            self._fd = input_stream.fileno()
        except (AttributeError, io.UnsupportedOperation):
            self._fd = None

    def read(self) -> bytes:
        if self.exhausted:
            return b''
        if self._fd is None:
            data = self.input_stream.read(self.chunk_size)
        else:
            ready, _, _ = select.select([self._fd], [], [], 0)
            if not ready:
                return b''
            # the raw descriptor returns what is waiting instead of filling a chunk
            data = os.read(self._fd, self.chunk_size)
        if not data:
            logger.debug("Input stream reached EOF")
            self.exhausted = True
            return b''
        return data

    def write(self, data: bytes) -> None:
        if self.output_stream is None:
            return
        self.output_stream.write(data + b'\n')
        self.output_stream.flush()

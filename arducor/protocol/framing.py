"""
Frame Reader Module.

Accumulates bytes from a transport and hands back complete frames.
"""

import logging
from typing import List

from arducor.protocol.codec import DEFAULT_MAX_PACKET_SIZE

# Configure logging
logger = logging.getLogger(__name__)

FRAME_DELIMITERS = b';\n'


class FrameReader:
    """
    Splits an inbound byte stream into frames.

    Frames end at ``;`` or a newline. A frame that grows past the packet size
    limit without a delimiter is thrown away up to the next delimiter.
    """

    def __init__(self, max_packet_size: int = DEFAULT_MAX_PACKET_SIZE):
        self.max_packet_size = max_packet_size
        self._buffer = bytearray()
        self._discarding = False
        self.discarded = 0

    def feed(self, data: bytes) -> List[str]:
        """
        Add bytes and return every frame they complete, without delimiters.

        Bytes that are not ASCII are kept as replacement characters so the
        codec rejects the frame they belong to.
        """
        frames = []
        for byte in data:
            if byte in FRAME_DELIMITERS:
                if self._discarding:
                    self._discarding = False
                elif self._buffer.strip():
                    frames.append(self._buffer.decode('ascii', errors='replace').strip())
                self._buffer.clear()
                continue

            if self._discarding:
                continue
            self._buffer.append(byte)
            if len(self._buffer) > self.max_packet_size:
                logger.debug(f"Discarding frame longer than {self.max_packet_size} bytes")
                self._buffer.clear()
                self._discarding = True
                self.discarded += 1
        return frames

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of a complete frame."""
        return len(self._buffer)

"""
Packet Codec Module.

This module turns inbound ASCII frames into commands and builds the outbound
packets sent back to the remote controller.

It is responsible for:
- splitting a frame into messages
- character set, checksum and shape checks on every message
- recognizing the discovery token
- encoding commands, state, custom array and discovery packets

It is not responsible for:
- accumulating bytes into frames (see framing.FrameReader)
- applying commands to devices
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from arducor.protocol.checksum import crc32
from arducor.protocol.commands import Command, PacketError, PacketHeader, parse_command

# Configure logging
logger = logging.getLogger(__name__)

# Delimiters
FRAME_DELIMITER = ';'
MESSAGE_DELIMITER = '&'
VALUE_DELIMITER = ','
CHECKSUM_DELIMITER = '#'

DISCOVERY_TOKEN = 'DISCOVERY_PACKET'

# Protocol version advertised in the discovery packet
PROTOCOL_MAJOR = 3
PROTOCOL_MINOR = 0
CAPABILITY_FLAGS = 0

DEFAULT_MAX_PACKET_SIZE = 500

VALID_CHARACTERS = frozenset('0123456789,&#-')
INTEGER_PATTERN = re.compile(r'^-?\d+$')


@dataclass
class MessageResult:
    """Outcome of one message inside a frame."""
    message: str
    command: Optional[Command] = None
    reason: Optional[str] = None
    applied: bool = True

    @property
    def ok(self) -> bool:
        return self.command is not None and self.applied


@dataclass
class FrameResult:
    """Outcome of one inbound frame."""
    frame: str
    discovery: bool = False
    messages: List[MessageResult] = field(default_factory=list)

    @property
    def commands(self) -> List[Command]:
        return [m.command for m in self.messages if m.command is not None]

    @property
    def successes(self) -> List[bool]:
        return [m.ok for m in self.messages]


class PacketCodec:
    """
    Encoder and decoder for the light protocol.

    Frames look like ``1,0,3,0#1234567&4,0,80#7654321;``. The checksum suffix is
    present on every message when checksums are enabled and absent otherwise.
    """

    def __init__(self, checksum_enabled: bool = True, max_packet_size: int = DEFAULT_MAX_PACKET_SIZE):
        self.checksum_enabled = checksum_enabled
        self.max_packet_size = max_packet_size

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def _strip_checksum(self, message: str) -> str:
        count = message.count(CHECKSUM_DELIMITER)
        if not self.checksum_enabled:
            if count:
                raise PacketError("checksum present while checksums are disabled")
            return message

        if count != 1:
            raise PacketError(f"expected one checksum delimiter, found {count}")
        payload, _, transmitted = message.partition(CHECKSUM_DELIMITER)
        if not transmitted.isdigit():
            raise PacketError(f"malformed checksum '{transmitted}'")
        expected = crc32(payload)
        if int(transmitted) != expected:
            raise PacketError(f"checksum mismatch: got {transmitted}, expected {expected}")
        return payload

    def decode_message(self, message: str) -> Command:
        """
        Decode a single message.

        Raises:
            PacketError: If any check fails
        """
        if not message:
            raise PacketError("empty message")
        invalid = set(message) - VALID_CHARACTERS
        if invalid:
            raise PacketError(f"invalid characters {''.join(sorted(invalid))!r}")

        payload = self._strip_checksum(message)
        parts = payload.split(VALUE_DELIMITER)
        if not all(INTEGER_PATTERN.match(part) for part in parts):
            raise PacketError(f"malformed values in '{payload}'")
        return parse_command([int(part) for part in parts])

    def is_discovery(self, frame: str) -> bool:
        return frame.strip().rstrip(FRAME_DELIMITER).startswith(DISCOVERY_TOKEN)

    def decode_frame(self, frame: str) -> FrameResult:
        """
        Decode every message of a frame.

        A bad message is dropped and logged; the rest of the frame is still decoded.
        """
        frame = frame.strip()
        if frame.endswith(FRAME_DELIMITER):
            frame = frame[:-1]
        result = FrameResult(frame)

        if self.is_discovery(frame):
            result.discovery = True
            return result

        if len(frame) > self.max_packet_size:
            logger.debug(f"Dropping frame of {len(frame)} bytes, limit is {self.max_packet_size}")
            result.messages.append(MessageResult(frame, reason="frame too long", applied=False))
            return result

        for message in frame.split(MESSAGE_DELIMITER):
            try:
                command = self.decode_message(message)
                result.messages.append(MessageResult(message, command))
            except PacketError as e:
                logger.debug(f"Dropping message '{message}': {e}")
                result.messages.append(MessageResult(message, reason=str(e), applied=False))
        return result

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode_values(self, values: Iterable) -> str:
        """Join values into one message, adding the checksum when enabled."""
        payload = VALUE_DELIMITER.join(str(v) for v in values)
        if self.checksum_enabled:
            return f"{payload}{CHECKSUM_DELIMITER}{crc32(payload)}"
        return payload

    def encode(self, command: Command) -> str:
        return self.encode_values(command.values())

    def encode_frame(self, messages: Iterable[str]) -> str:
        return MESSAGE_DELIMITER.join(messages) + FRAME_DELIMITER

    def echo_packet(self, commands: Iterable[Command]) -> Optional[str]:
        """Re-encode applied commands into one frame, or None if there are none."""
        messages = [self.encode(command) for command in commands]
        if not messages:
            return None
        return self.encode_frame(messages)

    def discovery_packet(self, devices) -> str:
        """
        Build the reply to a discovery request.

        Args:
            devices: Light devices in hardware index order
        """
        devices = list(devices)
        values = [
            DISCOVERY_TOKEN,
            PROTOCOL_MAJOR,
            PROTOCOL_MINOR,
            int(self.checksum_enabled),
            CAPABILITY_FLAGS,
            self.max_packet_size,
            len(devices),
        ]
        for device in devices:
            values.extend((device.name, device.light_type, device.product_type))
        return self.encode_frame([self.encode_values(values)])

    def state_packet(self, devices, now_ms: int) -> str:
        messages = [
            self.encode_values((int(PacketHeader.STATE_UPDATE_REQUEST),) + device.state_values(now_ms))
            for device in devices
        ]
        return self.encode_frame(messages)

    def custom_array_packet(self, devices) -> str:
        messages = [
            self.encode_values((int(PacketHeader.CUSTOM_ARRAY_UPDATE_REQUEST),) + device.custom_array_values())
            for device in devices
        ]
        return self.encode_frame(messages)

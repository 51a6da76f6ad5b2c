"""
Light protocol package.

This package parses and builds the framed ASCII packets exchanged with the
remote controller.
"""

from .checksum import crc32
from .codec import FrameResult, MessageResult, PacketCodec
from .commands import Command, PacketError, PacketHeader, parse_command
from .framing import FrameReader

__all__ = [
    'Command',
    'FrameReader',
    'FrameResult',
    'MessageResult',
    'PacketCodec',
    'PacketError',
    'PacketHeader',
    'crc32',
    'parse_command',
]

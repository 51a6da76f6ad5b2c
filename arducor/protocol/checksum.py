"""
Checksum Module.

CRC-32 over ASCII payloads using a 16 entry nibble table, the same table the
firmware keeps in flash. The result matches zlib.crc32 for the same input.
"""

from typing import Union

# Reflected CRC-32 polynomial
CRC_POLYNOMIAL = 0xEDB88320
CRC_INITIAL = 0xFFFFFFFF


def _build_nibble_table():
    table = []
    for nibble in range(16):
        crc = nibble
        for _ in range(4):
            crc = (crc >> 1) ^ CRC_POLYNOMIAL if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


CRC_TABLE = _build_nibble_table()


def crc_update(crc: int, byte: int) -> int:
    """Fold one byte into a running (uncomplemented) CRC."""
    crc = CRC_TABLE[(crc ^ byte) & 0x0F] ^ (crc >> 4)
    crc = CRC_TABLE[(crc ^ (byte >> 4)) & 0x0F] ^ (crc >> 4)
    return crc & 0xFFFFFFFF


class Crc32:
    """Incremental CRC-32 calculator."""

    def __init__(self):
        self._crc = CRC_INITIAL

    def update(self, data: Union[bytes, str]) -> 'Crc32':
        if isinstance(data, str):
            data = data.encode('ascii')
        crc = self._crc
        for byte in data:
            crc = crc_update(crc, byte)
        self._crc = crc
        return self

    @property
    def value(self) -> int:
        return ~self._crc & 0xFFFFFFFF


def crc32(data: Union[bytes, str]) -> int:
    """Compute the CRC-32 of a complete payload."""
    return Crc32().update(data).value
